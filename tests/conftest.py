"""
Pytest configuration for Staging Service tests

Queues are built with compressed timers so countdown scenarios finish in
milliseconds. The send operation and the notifier are test doubles.
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from staging_service.models import SendResult
from staging_service.services.queue_store import QueueStore
from staging_service.services.staging_queue import StagingQueueManager


class RecordingNotifier:
    """Collects notifications instead of pushing them to dashboards"""

    def __init__(self):
        self.notices = []

    def notify(self, title, message="", severity="info"):
        self.notices.append((title, message, getattr(severity, "value", severity)))

    def titles(self):
        return [n[0] for n in self.notices]


async def wait_until(predicate, timeout=2.0, interval=0.005):
    """Poll until predicate() is truthy; fail the test on timeout"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store(tmp_path):
    return QueueStore(str(tmp_path / "store"))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def send_ok():
    """Send operation that always succeeds"""
    return AsyncMock(return_value=SendResult(success=True, message_id="spruce_msg_1"))


@pytest.fixture
def send_fail():
    """Send operation that rejects with a network error"""
    return AsyncMock(return_value=SendResult(success=False, error="network error"))


@pytest_asyncio.fixture
async def make_queue(store, notifier, send_ok):
    """Factory for queues with fast timers; shuts every queue down afterwards"""
    created = []

    def factory(send=None, **options):
        params = {
            "initial_countdown": 5,
            "tick_interval": 0.01,
            "cancel_grace": 0.05,
            "sent_grace": 0.1,
        }
        params.update(options)
        queue = StagingQueueManager(
            store=params.pop("store", store),
            send=send or send_ok,
            notifier=params.pop("notifier", notifier),
            **params,
        )
        created.append(queue)
        return queue

    yield factory

    for queue in created:
        await queue.shutdown()


@pytest.fixture
def sample_message():
    return {
        "content": "Take ibuprofen",
        "patient_id": "p1",
        "patient_name": "Jane Doe",
        "conversation_id": "c1",
    }


@pytest.fixture
def sample_conversation():
    """Doctor/patient exchange ending with an acknowledged plan"""
    return [
        {"content": "Hi doctor, I have a sore throat since Monday.", "timestamp": "2024-03-01T09:00:00Z", "isFromPatient": True},
        {"content": "Any fever or difficulty swallowing?", "timestamp": "2024-03-01T09:05:00Z", "isFromPatient": False},
        {"content": "Mild fever, 38.1C last night.", "timestamp": "2024-03-01T09:10:00Z", "isFromPatient": True},
        {"content": "Plan: amoxicillin 500mg three times daily for 10 days.\nRest and fluids.", "timestamp": "2024-03-01T09:15:00Z", "isFromPatient": False},
        {"content": "Thank you, sounds good.", "timestamp": "2024-03-01T09:20:00Z", "isFromPatient": True},
    ]
