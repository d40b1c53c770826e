import pytest

from insight_utils.errors import ValidationError
from insight_utils.fanout import split


REQUEST = {
    "ownerNames": ["A", "B", "C"],
    "dateRange": "2025-08-01 to 2025-08-30",
    "entityType": "squad",
    "entityName": "Alpha",
}


class TestSplit:
    def test_one_task_per_owner(self):
        tasks = split(REQUEST)

        assert len(tasks) == 3
        assert all(len(t["ownerNames"]) == 1 for t in tasks)
        assert all(t["totalBatches"] == 3 for t in tasks)
        assert len({t["batchId"] for t in tasks}) == 3

    def test_order_and_shared_fields(self):
        tasks = split(REQUEST, now_ms=1700000000000, request_id="req1")

        assert [t["ownerNames"][0] for t in tasks] == ["A", "B", "C"]
        assert [t["batchIndex"] for t in tasks] == [0, 1, 2]
        assert tasks[1]["batchId"] == "batch-1700000000000-req1-1"
        assert tasks[1]["ownerId"] == "owner-1"
        for t in tasks:
            assert t["dateRange"] == REQUEST["dateRange"]
            assert t["entityType"] == "squad"
            assert t["entityName"] == "Alpha"
            assert t["requestId"] == "req1"

    def test_batch_ids_differ_between_dispatches(self):
        first = {t["batchId"] for t in split(REQUEST)}
        second = {t["batchId"] for t in split(REQUEST)}
        assert not first & second

    def test_duplicate_names_are_not_collapsed(self):
        tasks = split({**REQUEST, "ownerNames": ["A", "A"]})
        assert len(tasks) == 2
        assert tasks[0]["batchId"] != tasks[1]["batchId"]

    def test_eureka_range_passed_through(self):
        tasks = split({**REQUEST, "eurekaDateRange": "2025-08-01T00:00:00 to 2025-08-30T23:59:59"})
        assert tasks[0]["eurekaDateRange"].startswith("2025-08-01")
        assert "eurekaDateRange" not in split(REQUEST)[0]

    @pytest.mark.parametrize("owners", [None, [], "A,B"])
    def test_missing_or_empty_owner_names(self, owners):
        with pytest.raises(ValidationError):
            split({**REQUEST, "ownerNames": owners})

    def test_blank_owner_name(self):
        with pytest.raises(ValidationError) as exc:
            split({**REQUEST, "ownerNames": ["A", "  ", "C"]})
        assert exc.value.details == {"indexes": [1]}
