"""Shared fixtures: an in-memory stand-in for a gspread Spreadsheet."""

import re

import pytest
from gspread.exceptions import GSpreadException, WorksheetNotFound

from circuit_logic import Member
from sheets_store import StudioStore
from workout_logic import Exercise


class FakeWorksheet:
    """Keeps rows as lists; the first row is the header."""

    def __init__(self, title: str):
        self.title = title
        self.rows: list[list] = []
        self.fail_reads = False

    def append_row(self, values):
        self.rows.append(list(values))

    def get_all_records(self):
        if self.fail_reads:
            raise GSpreadException("quota exceeded")
        if not self.rows:
            return []
        header, *body = self.rows
        return [dict(zip(header, row)) for row in body]

    def update(self, range_name=None, values=None):
        row_number = int(re.match(r"A(\d+)", range_name).group(1))
        self.rows[row_number - 1] = list(values[0])


class FakeSpreadsheet:
    def __init__(self):
        self.tabs: dict[str, FakeWorksheet] = {}

    def worksheets(self):
        return list(self.tabs.values())

    def add_worksheet(self, title, rows, cols):
        ws = FakeWorksheet(title)
        self.tabs[title] = ws
        return ws

    def worksheet(self, title):
        if title not in self.tabs:
            raise WorksheetNotFound(title)
        return self.tabs[title]


@pytest.fixture
def spreadsheet():
    return FakeSpreadsheet()


@pytest.fixture
def store(spreadsheet):
    return StudioStore(spreadsheet)


@pytest.fixture
def member():
    return Member(id="m-alex", name="Alex Carter", client_type="circuit_dropin")


@pytest.fixture
def other_member():
    return Member(id="m-sam", name="Sam Reed", client_type="block")


@pytest.fixture
def exercise_pool():
    return [Exercise(name=f"Move {i}", video_url=f"https://videos.example/core/move_{i}.mp4")
            for i in range(1, 13)]
