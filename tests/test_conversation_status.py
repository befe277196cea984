"""
Tests for the conversation status classifier
"""

from datetime import datetime, timedelta, timezone

import pytest

from staging_service.services.conversation_status import (
    ConversationMessage,
    ConversationStatus,
    classify_conversation,
)

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def thread(*entries):
    """Build messages from (is_from_patient, content) pairs, five minutes apart"""
    return [
        ConversationMessage(
            content=content,
            timestamp=START + timedelta(minutes=5 * i),
            is_from_patient=from_patient,
            sender_id="patient-1" if from_patient else "doctor-1",
        )
        for i, (from_patient, content) in enumerate(entries)
    ]


class TestClassifyConversation:

    def test_empty_is_unknown(self):
        result = classify_conversation([])
        assert result.status == ConversationStatus.UNKNOWN
        assert result.detail == ""

    def test_short_thread_is_initial(self):
        result = classify_conversation(thread(
            (True, "Hi, I have a cough"),
            (False, "How long has it lasted?"),
        ))
        assert result.status == ConversationStatus.INITIAL
        assert result.detail == "New conversation"

    def test_waiting_for_pharmacy(self):
        result = classify_conversation(thread(
            (True, "I have a rash"),
            (False, "Is it itchy?"),
            (True, "Yes, very"),
            (False, "What is your preferred pharmacy?"),
        ))
        assert result.status == ConversationStatus.WAITING_PATIENT_INFO
        assert result.detail == "Waiting for pharmacy information"

    def test_pharmacy_answered_moves_on(self):
        result = classify_conversation(thread(
            (True, "I have a rash"),
            (False, "Is it itchy?"),
            (False, "What is your preferred pharmacy?"),
            (True, "The pharmacy on Main street"),
        ))
        assert result.status != ConversationStatus.WAITING_PATIENT_INFO

    def test_waiting_for_clarification(self):
        result = classify_conversation(thread(
            (True, "I have a headache"),
            (False, "Since when?"),
            (True, "Two days"),
            (False, "Do you have any vision changes? Please describe them."),
        ))
        assert result.status == ConversationStatus.WAITING_CLARIFICATION
        assert result.detail == "Do you have any vision changes?"

    def test_treatment_proposed(self):
        result = classify_conversation(thread(
            (True, "I have a sore throat"),
            (False, "Any fever?"),
            (True, "A little"),
            (False, "Thanks.\nPlan: amoxicillin 500mg three times daily\nRest"),
        ))
        assert result.status == ConversationStatus.TREATMENT_PROPOSED
        assert result.detail == "Plan: amoxicillin 500mg three times daily"

    def test_treatment_proposed_default_detail(self):
        result = classify_conversation(thread(
            (True, "I have a sore throat"),
            (False, "Any fever?"),
            (True, "A little"),
            (False, "I am prescribing amoxicillin"),
        ))
        assert result.status == ConversationStatus.TREATMENT_PROPOSED
        assert result.detail == "Treatment plan sent to patient"

    def test_plan_acknowledged(self):
        result = classify_conversation(thread(
            (True, "I have a sore throat"),
            (False, "Any fever?"),
            (True, "A little"),
            (False, "Plan: amoxicillin 500mg three times daily"),
            (True, "Got it, thank you!"),
        ))
        assert result.status == ConversationStatus.PLAN_ACKNOWLEDGED

    def test_messages_are_sorted_by_timestamp(self):
        messages = thread(
            (True, "I have a sore throat"),
            (False, "Any fever?"),
            (True, "A little"),
            (False, "Plan: rest and fluids"),
            (True, "Sounds good"),
        )
        result = classify_conversation(list(reversed(messages)))
        assert result.status == ConversationStatus.PLAN_ACKNOWLEDGED

    def test_patient_id_decides_last_sender(self):
        messages = thread(
            (True, "I have a headache"),
            (False, "Since when?"),
            (True, "Two days"),
            (False, "Any nausea?"),
        )
        # Last message attributed to the patient: nothing to wait for
        result = classify_conversation(messages, patient_id="doctor-1")
        assert result.status == ConversationStatus.UNKNOWN

    @pytest.mark.parametrize("reply", ["ok", "I understand", "thanks"])
    def test_acknowledgment_phrases(self, reply):
        result = classify_conversation(thread(
            (True, "Cough"),
            (False, "Dry?"),
            (True, "Yes"),
            (False, "Treatment: honey and rest"),
            (True, reply),
        ))
        assert result.status == ConversationStatus.PLAN_ACKNOWLEDGED
