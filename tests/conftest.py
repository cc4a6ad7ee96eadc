"""
Shared fixtures: analysis factories, a scripted analysis provider and an
in-memory checkpoint store.
"""

import asyncio

import pytest

from runsheet_processor.analyzer import AnalysisProvider
from runsheet_processor.checkpoint import MemoryCheckpointStore
from runsheet_processor.models import Analysis


def make_analysis(document_type="WD", grantors=(), grantees=(), ownership_change=True,
                  description="", **extra) -> Analysis:
    """Build an Analysis from the provider's camelCase fields."""
    data = {
        "documentType": document_type,
        "grantors": list(grantors),
        "grantees": list(grantees),
        "ownershipChange": ownership_change,
        "description": description,
        "leaseStatus": "none",
    }
    data.update(extra)
    return Analysis.from_dict(data)


def patent(grantee, description="Patent from the United States", **extra) -> Analysis:
    return make_analysis("Patent", ["USA"], [grantee], description=description, **extra)


class ScriptedProvider(AnalysisProvider):
    """Returns queued analyses by row number; an Exception entry is raised."""

    def __init__(self, analyses: dict = None):
        self.analyses = dict(analyses or {})
        self.requests = []
        self.gate: asyncio.Event = None

    async def analyze(self, request):
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        result = self.analyses[request.row_number]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def store():
    return MemoryCheckpointStore()


RUNSHEET_TEXT = "\n".join([
    "Patent | USA to John Smith | Book 1 Page 1",
    "WD | John Smith to Mary Jones | Book 10 Page 20",
    "MD | Mary Jones to Acme Oil LLC | Book 12 Page 5",
])


@pytest.fixture
def runsheet_text():
    return RUNSHEET_TEXT


@pytest.fixture
def runsheet_analyses():
    return {
        1: patent("John Smith", documentNumber="Book 1 Page 1"),
        2: make_analysis("WD", ["John Smith"], ["Mary Jones"], recordingReference="Book 10 Page 20"),
        3: make_analysis("MD", ["Mary Jones"], ["Acme Oil LLC"], recordingReference="Book 12 Page 5"),
    }
