"""
Heuristic conversation status classifier

Looks at the doctor/patient message history and guesses where the
conversation stands (waiting on the patient, plan proposed, ...).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence


class ConversationStatus(str, Enum):
    INITIAL = "initial"                              # first contact
    WAITING_PATIENT_INFO = "waiting_patient_info"    # e.g. pharmacy details
    TREATMENT_PROPOSED = "treatment_proposed"
    WAITING_CLARIFICATION = "waiting_clarification"
    PLAN_ACKNOWLEDGED = "plan_acknowledged"
    CLOSED = "closed"
    UNKNOWN = "unknown"


PHARMACY_REQUEST_MARKERS = ("what is", "provide", "send")
PLAN_MARKERS = ("plan:", "treatment:", "prescription:", "prescribing")
PLAN_LINE_MARKERS = ("plan:", "treatment:", "prescription:")
ACKNOWLEDGMENT_MARKERS = ("thank", "got it", "sounds good", "ok", "understand")


@dataclass
class ConversationMessage:
    content: str
    timestamp: datetime
    is_from_patient: bool
    sender_id: Optional[str] = None


@dataclass
class ConversationStatusResult:
    status: ConversationStatus
    detail: str = ""


def _epoch(value: Optional[datetime]) -> float:
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _is_pharmacy_request(message: ConversationMessage) -> bool:
    text = message.content.lower()
    return (
        not message.is_from_patient
        and "pharmacy" in text
        and any(marker in text for marker in PHARMACY_REQUEST_MARKERS)
    )


def _is_plan(message: ConversationMessage) -> bool:
    text = message.content.lower()
    return not message.is_from_patient and any(marker in text for marker in PLAN_MARKERS)


def classify_conversation(
    messages: Sequence[ConversationMessage],
    patient_id: Optional[str] = None,
) -> ConversationStatusResult:
    """Classify a conversation from its messages"""
    if not messages:
        return ConversationStatusResult(ConversationStatus.UNKNOWN)

    ordered: List[ConversationMessage] = sorted(messages, key=lambda m: _epoch(m.timestamp))

    last_message = ordered[-1]
    doctor_messages = [m for m in ordered if not m.is_from_patient]
    patient_messages = [m for m in ordered if m.is_from_patient]
    last_doctor = doctor_messages[-1] if doctor_messages else None
    last_patient = patient_messages[-1] if patient_messages else None

    asking_for_pharmacy = any(_is_pharmacy_request(m) for m in ordered)
    proposing_treatment = any(_is_plan(m) for m in ordered)

    patient_acknowledged = bool(
        proposing_treatment
        and last_patient
        and _epoch(last_patient.timestamp) > _epoch(last_doctor.timestamp if last_doctor else None)
        and any(marker in last_patient.content.lower() for marker in ACKNOWLEDGMENT_MARKERS)
    )

    asking_clarification = bool(
        last_doctor
        and "?" in last_doctor.content
        and not proposing_treatment
        and not asking_for_pharmacy
    )

    # Without a patient id fall back to the message direction
    if patient_id is not None:
        last_from_patient = last_message.sender_id == patient_id
    else:
        last_from_patient = last_message.is_from_patient

    if len(ordered) <= 2:
        return ConversationStatusResult(ConversationStatus.INITIAL, "New conversation")

    if (
        asking_for_pharmacy
        and not last_from_patient
        and not (last_patient and "pharmacy" in last_patient.content.lower())
    ):
        return ConversationStatusResult(
            ConversationStatus.WAITING_PATIENT_INFO,
            "Waiting for pharmacy information",
        )

    if asking_clarification and not last_from_patient:
        question = last_doctor.content.split("?")[0] + "?"
        return ConversationStatusResult(ConversationStatus.WAITING_CLARIFICATION, question)

    if proposing_treatment and patient_acknowledged:
        return ConversationStatusResult(
            ConversationStatus.PLAN_ACKNOWLEDGED,
            "Patient acknowledged treatment plan",
        )

    if proposing_treatment:
        plan_line = None
        if last_doctor:
            plan_line = next(
                (
                    line for line in last_doctor.content.split("\n")
                    if any(marker in line.lower() for marker in PLAN_LINE_MARKERS)
                ),
                None,
            )
        return ConversationStatusResult(
            ConversationStatus.TREATMENT_PROPOSED,
            plan_line or "Treatment plan sent to patient",
        )

    return ConversationStatusResult(ConversationStatus.UNKNOWN)
