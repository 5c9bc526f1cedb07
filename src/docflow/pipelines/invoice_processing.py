"""Linear invoice pipeline whose storage stage always fails.

Used to demonstrate failure propagation: ``step-6-store`` exhausts its
budget and ``step-7-notify`` is skipped.
"""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from docflow.orchestration.graph import PipelineDefinition, StageDefinition
from docflow.orchestration.stages import StageContext, StageHandler

from .simulation import simulated

PIPELINE_NAME = "invoice-processing-pipeline"
TRIGGER_EVENT = "invoice:process"


class InvoiceInput(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    invoice_id: str = Field(min_length=1, validation_alias=AliasChoices("invoice_id", "id"))
    file_path: str = ""


class StepOutput(BaseModel):
    status: str
    message: str


class InvoiceStorageError(RuntimeError):
    """Raised by the storage stage when the database cannot be reached."""


class InvoiceStep(StageHandler[InvoiceInput, StepOutput]):
    """Simulated step returning a fixed completion message."""

    input_model = InvoiceInput
    output_model = StepOutput

    def __init__(self, message: str) -> None:
        self.message = message

    def run(self, context: StageContext, payload: InvoiceInput) -> StepOutput:
        return StepOutput(status="completed", message=self.message)


class StoreInvoiceStep(StageHandler[InvoiceInput, StepOutput]):
    input_model = InvoiceInput
    output_model = StepOutput

    def run(self, context: StageContext, payload: InvoiceInput) -> StepOutput:
        raise InvoiceStorageError("database connection timeout after 30s")


def build_invoice_pipeline(*, step_delay_seconds: float = 0.0) -> PipelineDefinition:
    steps: list[tuple[str, StageHandler[InvoiceInput, StepOutput], float]] = [
        ("step-1-receive", InvoiceStep("Invoice successfully received"), 2),
        ("step-2-validate", InvoiceStep("Invoice validation passed"), 2),
        ("step-3-extract", InvoiceStep("Data extracted successfully"), 2),
        ("step-4-calculate", InvoiceStep("Calculations completed"), 2),
        ("step-5-verify", InvoiceStep("Verification complete"), 2),
        ("step-6-store", StoreInvoiceStep(), 2),
        ("step-7-notify", InvoiceStep("Notification sent"), 1),
    ]
    stages = []
    previous: tuple[str, ...] = ()
    for name, handler, weight in steps:
        stages.append(
            StageDefinition(
                name=name,
                handler=simulated(handler, weight, step_delay_seconds),
                parents=previous,
            )
        )
        previous = (name,)
    return PipelineDefinition(
        name=PIPELINE_NAME,
        description="Receive, validate, extract, calculate, verify, store and notify",
        on_events=(TRIGGER_EVENT,),
        stages=tuple(stages),
    )


__all__ = [
    "InvoiceInput",
    "InvoiceStorageError",
    "PIPELINE_NAME",
    "StepOutput",
    "TRIGGER_EVENT",
    "build_invoice_pipeline",
]
