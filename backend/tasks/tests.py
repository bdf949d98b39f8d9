import copy
import json
import os
import stat
import tempfile
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

from django.test import SimpleTestCase, override_settings
from rest_framework.test import APISimpleTestCase

from .exceptions import StorageError, TaskNotFound
from .pert import detect_circular_dependencies, flatten_for_pert, task_duration
from .storage import TaskTreeStore, mint_id
from .tree import append_child, collect_ids, find_by_id, merge_fields


def sample_tree():
    return [
        {
            "id": "1",
            "name": "Plan",
            "children": [
                {"id": "2", "name": "Design", "children": []},
                {"id": 3, "name": "Build", "children": [
                    {"id": "4", "name": "Backend"},
                ]},
            ],
        },
        {"id": "5", "name": "Release", "children": []},
    ]


class TempDataFileMixin:
    """Points GANTT_DATA_FILE at a fresh temporary file for each test."""

    def setUp(self):
        super().setUp()
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp_dir = Path(tmp.name)
        self.data_file = self.tmp_dir / "updated.json"
        override = override_settings(GANTT_DATA_FILE=self.data_file)
        override.enable()
        self.addCleanup(override.disable)

    def write_tree(self, tree):
        self.data_file.write_text(json.dumps(tree), encoding="utf-8")

    def read_tree(self):
        return json.loads(self.data_file.read_text(encoding="utf-8"))

    def break_storage(self):
        """Make the data file unwritable by placing it under a regular file."""
        blocker = self.tmp_dir / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        self.data_file = blocker / "updated.json"
        override = override_settings(GANTT_DATA_FILE=self.data_file)
        override.enable()
        self.addCleanup(override.disable)


class TreeTests(SimpleTestCase):
    def test_find_by_id_returns_node_for_every_present_id(self):
        tree = sample_tree()
        for wanted in ("1", "2", "3", "4", "5"):
            node = find_by_id(tree, wanted)
            self.assertIsNotNone(node)
            self.assertEqual(str(node["id"]), wanted)

    def test_find_by_id_compares_string_forms(self):
        tree = sample_tree()
        self.assertEqual(find_by_id(tree, "3")["name"], "Build")
        self.assertEqual(find_by_id(tree, 4)["name"], "Backend")

    def test_find_by_id_missing_returns_none(self):
        self.assertIsNone(find_by_id(sample_tree(), "99"))
        self.assertIsNone(find_by_id([], "1"))

    def test_find_by_id_first_match_wins_on_duplicates(self):
        tree = [
            {"id": "1", "name": "Parent", "children": [{"id": "dup", "name": "first"}]},
            {"id": "dup", "name": "second"},
        ]
        self.assertEqual(find_by_id(tree, "dup")["name"], "first")

    def test_find_by_id_returns_reference_into_tree(self):
        tree = sample_tree()
        find_by_id(tree, "4")["name"] = "API"
        self.assertEqual(tree[0]["children"][1]["children"][0]["name"], "API")

    def test_merge_with_empty_fields_is_noop(self):
        node = {"id": "1", "name": "Plan", "progressValue": "50%", "children": []}
        before = copy.deepcopy(node)
        merge_fields(node, {})
        self.assertEqual(node, before)

    def test_merge_overwrites_only_given_fields(self):
        node = {"id": "1", "name": "Plan", "status": "PLANNED", "assignee": "kim"}
        merge_fields(node, {"status": "DONE", "progressValue": 100})
        self.assertEqual(node, {"id": "1", "name": "Plan", "status": "DONE",
                                "assignee": "kim", "progressValue": 100})

    def test_append_child_creates_list_and_keeps_order(self):
        parent = {"id": "1"}
        append_child(parent, {"id": "a"})
        append_child(parent, {"id": "b"})
        self.assertEqual([c["id"] for c in parent["children"]], ["a", "b"])

    def test_collect_ids(self):
        self.assertEqual(collect_ids(sample_tree()), {"1", "2", "3", "4", "5"})


class StorageTests(TempDataFileMixin, SimpleTestCase):
    def test_load_missing_file_is_empty(self):
        self.assertEqual(TaskTreeStore(self.data_file).load(), [])

    def test_load_malformed_json_degrades_to_empty(self):
        self.data_file.write_text("{not json", encoding="utf-8")
        with self.assertLogs("tasks.storage", level="ERROR"):
            self.assertEqual(TaskTreeStore(self.data_file).load(), [])

    def test_load_non_array_document_degrades_to_empty(self):
        self.write_tree({"id": "1"})
        with self.assertLogs("tasks.storage", level="WARNING"):
            self.assertEqual(TaskTreeStore(self.data_file).load(), [])

    def test_save_writes_indented_json(self):
        TaskTreeStore(self.data_file).save([{"id": "1", "name": "Café"}])
        text = self.data_file.read_text(encoding="utf-8")
        self.assertIn('\n  {\n    "id": "1"', text)
        self.assertIn("Café", text)

    def test_save_failure_raises_storage_error(self):
        self.break_storage()
        store = TaskTreeStore(self.data_file)
        with self.assertLogs("tasks.storage", level="ERROR"):
            with self.assertRaises(StorageError):
                store.save([])

    def test_update_unknown_id_raises_and_leaves_file(self):
        self.write_tree(sample_tree())
        before = self.data_file.read_bytes()
        with self.assertRaises(TaskNotFound):
            TaskTreeStore(self.data_file).update_task("99", {"id": "99", "name": "x"})
        self.assertEqual(self.data_file.read_bytes(), before)

    def test_add_task_ignores_caller_id_and_children(self):
        self.write_tree(sample_tree())
        store = TaskTreeStore(self.data_file)
        task = store.add_task({"id": "temp_1", "name": "New", "children": [{"id": "x"}]}, parent_id="2")
        self.assertNotEqual(task["id"], "temp_1")
        self.assertEqual(task["children"], [])
        self.assertEqual(find_by_id(store.load(), "2")["children"], [task])

    def test_mint_id_skips_existing_ids(self):
        fake = [SimpleNamespace(hex="aaa"), SimpleNamespace(hex="bbb")]
        with mock.patch("tasks.storage.uuid.uuid4", side_effect=fake):
            self.assertEqual(mint_id({"task_aaa"}), "task_bbb")

    def test_save_rejects_non_finite_numbers_and_keeps_file(self):
        self.write_tree(sample_tree())
        before = self.data_file.read_bytes()
        with self.assertLogs("tasks.storage", level="ERROR"):
            with self.assertRaises(StorageError):
                TaskTreeStore(self.data_file).save([{"id": "1", "duration": float("inf")}])
        self.assertEqual(self.data_file.read_bytes(), before)
        self.assertEqual(list(self.tmp_dir.glob("*.tmp")), [])

    def test_save_keeps_existing_file_mode(self):
        self.write_tree(sample_tree())
        os.chmod(self.data_file, 0o664)
        TaskTreeStore(self.data_file).update_task("1", {"name": "Renamed"})
        self.assertEqual(stat.S_IMODE(self.data_file.stat().st_mode), 0o664)

    def test_save_new_file_is_not_private(self):
        TaskTreeStore(self.data_file).save([])
        self.assertEqual(stat.S_IMODE(self.data_file.stat().st_mode), 0o644)


class PertTests(SimpleTestCase):
    def test_duration_from_actual_dates(self):
        task = {"actualStart": "2025-01-01", "actualEnd": "2025-01-11T00:00:00Z"}
        self.assertEqual(task_duration(task), 10.0)

    def test_duration_from_epoch_milliseconds(self):
        task = {"actualStart": 1735689600000, "actualEnd": 1736121600000}
        self.assertEqual(task_duration(task), 5.0)

    def test_duration_from_structured_value(self):
        self.assertEqual(task_duration({"duration": {"m_duration": 17.5, "m_units": "DAYS"}}), 17.5)
        self.assertEqual(task_duration({"duration": {"magnitude": 2, "unit": "WEEKS"}}), 14.0)

    def test_duration_has_floor_of_one_day(self):
        self.assertEqual(task_duration({"duration": 0}), 1.0)
        self.assertEqual(task_duration({"actualStart": "2025-01-01", "actualEnd": "2025-01-01"}), 1.0)
        self.assertEqual(task_duration({}), 1.0)

    def test_duration_from_date_suffixed_fields(self):
        task = {"actualStartDate": "2025-01-01", "actualEndDate": "2025-01-11"}
        self.assertEqual(task_duration(task), 10.0)
        mixed = {"actualStart": "2025-01-01", "actualEndDate": "2025-01-04"}
        self.assertEqual(task_duration(mixed), 3.0)

    def test_non_finite_duration_falls_back_to_floor(self):
        self.assertEqual(task_duration({"duration": "inf"}), 1.0)
        self.assertEqual(task_duration({"duration": "nan"}), 1.0)
        self.assertEqual(task_duration({"duration": {"magnitude": 1e308, "unit": "WEEKS"}}), 1.0)

    def test_flatten_collects_rows_and_edges_in_preorder(self):
        tree = [
            {"id": "1", "name": "A", "actualStart": "2025-01-01", "actualEnd": "2025-01-11", "children": [
                {"id": "3", "name": "C", "duration": 0, "connectTo": "2"},
            ]},
            {"id": "2", "name": "B", "duration": {"m_duration": 3, "m_units": "DAYS"},
             "connector": [{"connectTo": "1", "connectorType": "finish-start"}]},
        ]
        rows, deps = flatten_for_pert(tree)
        self.assertEqual(rows, [
            {"id": "1", "name": "A", "duration": 10.0},
            {"id": "3", "name": "C", "duration": 1.0},
            {"id": "2", "name": "B", "duration": 3.0},
        ])
        self.assertEqual(deps, [{"from": "2", "to": "3"}, {"from": "1", "to": "2"}])

    def test_detect_cycles(self):
        deps = [{"from": "2", "to": "1"}, {"from": "1", "to": "2"}]
        self.assertEqual(detect_circular_dependencies(deps), [["1", "2", "1"]])

    def test_self_dependency_is_a_cycle(self):
        self.assertEqual(detect_circular_dependencies([{"from": 7, "to": "7"}]), [["7", "7"]])

    def test_acyclic_graph_has_no_cycles(self):
        deps = [{"from": "1", "to": "2"}, {"from": "2", "to": "3"}, {"from": "1", "to": "3"}]
        self.assertEqual(detect_circular_dependencies(deps), [])


class SyncApiTests(TempDataFileMixin, APISimpleTestCase):
    def test_read_without_file_returns_empty_list(self):
        response = self.client.get("/api/gantt/data")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])

    def test_bulk_save_then_read_round_trips(self):
        tree = [
            {
                "id": "1", "name": "Phase 1", "actualStart": "2025-01-01", "actualEnd": "2025-02-01",
                "progressValue": "50%", "status": "IN_PROGRESS", "assignee": "Ana",
                "duration": {"m_duration": 17.6, "m_units": "DAYS"},
                "children": [
                    {"id": "2", "name": "Étude", "progressValue": 33.3, "duration": 4,
                     "connector": [{"connectTo": "3", "connectorType": "finish-start"}], "children": []},
                    {"id": "3", "name": "Build", "children": []},
                ],
            },
            {"id": 4, "name": "Numeric id"},
        ]
        response = self.client.post("/api/gantt/save", tree, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/gantt/data").json(), tree)

    def test_bulk_save_overwrites_previous_tree(self):
        self.write_tree(sample_tree())
        self.client.post("/api/gantt/save", [{"id": "9"}], format="json")
        self.assertEqual(self.read_tree(), [{"id": "9"}])

    def test_bulk_save_rejects_non_array(self):
        response = self.client.post("/api/gantt/save", {"id": "1"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertFalse(self.data_file.exists())

    def test_bulk_save_write_failure_is_500(self):
        self.break_storage()
        with self.assertLogs("tasks.storage", level="ERROR"):
            response = self.client.post("/api/gantt/save", [], format="json")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Failed to save"})

    def test_update_renames_task(self):
        self.write_tree([{"id": "1", "name": "Root", "children": []}])
        response = self.client.post("/api/gantt/task/update", {"id": "1", "name": "Renamed"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"id": "1", "name": "Renamed", "children": []})
        self.assertEqual(self.read_tree(), [{"id": "1", "name": "Renamed", "children": []}])

    def test_update_nested_task_keeps_siblings_and_order(self):
        self.write_tree(sample_tree())
        response = self.client.post("/api/gantt/task/update",
                                    {"id": "2", "status": "DONE", "progressValue": "100%"}, format="json")
        self.assertEqual(response.status_code, 200)
        stored = self.read_tree()
        self.assertEqual([c["id"] for c in stored[0]["children"]], ["2", 3])
        self.assertEqual(stored[0]["children"][0],
                         {"id": "2", "name": "Design", "children": [], "status": "DONE", "progressValue": "100%"})

    def test_update_matches_numeric_stored_id(self):
        self.write_tree(sample_tree())
        response = self.client.post("/api/gantt/task/update", {"id": "3", "assignee": "Lee"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["name"], "Build")

    def test_update_unknown_id_is_404_and_file_untouched(self):
        self.write_tree(sample_tree())
        before = self.data_file.read_bytes()
        response = self.client.post("/api/gantt/task/update", {"id": "nope", "name": "x"}, format="json")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Task ID not found"})
        self.assertEqual(self.data_file.read_bytes(), before)

    def test_update_without_id_is_400(self):
        self.write_tree(sample_tree())
        response = self.client.post("/api/gantt/task/update", {"name": "x"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_add_child_under_parent(self):
        self.write_tree([{"id": "1", "children": []}])
        response = self.client.post("/api/gantt/task/add", {"parentId": "1", "name": "Sub"}, format="json")
        self.assertEqual(response.status_code, 200)
        child = response.json()
        self.assertEqual(child["name"], "Sub")
        self.assertEqual(child["children"], [])
        self.assertNotIn("parentId", child)
        self.assertNotEqual(child["id"], "1")
        self.assertEqual(self.read_tree(), [{"id": "1", "children": [child]}])

    def test_add_child_appends_after_existing_children(self):
        self.write_tree(sample_tree())
        existing = collect_ids(sample_tree())
        response = self.client.post("/api/gantt/task/add", {"parentId": "1", "name": "Test"}, format="json")
        child = response.json()
        stored = self.read_tree()
        self.assertEqual([c["id"] for c in stored[0]["children"]], ["2", 3, child["id"]])
        self.assertNotIn(child["id"], existing)

    def test_add_without_parent_creates_root(self):
        self.write_tree(sample_tree())
        for body in ({"name": "Root A"}, {"parentId": None, "name": "Root B"}, {"parentId": "", "name": "Root C"}):
            response = self.client.post("/api/gantt/task/add", body, format="json")
            self.assertEqual(response.status_code, 200)
        self.assertEqual([n["name"] for n in self.read_tree()],
                         ["Plan", "Release", "Root A", "Root B", "Root C"])

    def test_add_to_empty_store_creates_file(self):
        response = self.client.post("/api/gantt/task/add", {"name": "First"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.read_tree(), [response.json()])

    def test_add_under_unknown_parent_is_404_and_file_untouched(self):
        self.write_tree(sample_tree())
        before = self.data_file.read_bytes()
        response = self.client.post("/api/gantt/task/add", {"parentId": "99", "name": "Orphan"}, format="json")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Parent ID not found"})
        self.assertEqual(self.data_file.read_bytes(), before)

    def test_add_write_failure_is_500(self):
        self.break_storage()
        with self.assertLogs("tasks.storage", level="ERROR"):
            response = self.client.post("/api/gantt/task/add", {"name": "x"}, format="json")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "File write failed"})

    def test_pert_view(self):
        self.write_tree([
            {"id": "1", "name": "A", "duration": 2, "children": [
                {"id": "2", "name": "B", "duration": 3, "connectTo": "1"},
            ]},
        ])
        response = self.client.get("/api/gantt/pert")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            "data": [{"id": "1", "name": "A", "duration": 2.0}, {"id": "2", "name": "B", "duration": 3.0}],
            "dependencies": [{"from": "1", "to": "2"}],
        })

    def test_pert_view_rejects_cycles(self):
        self.write_tree([
            {"id": "1", "name": "A", "connectTo": "2"},
            {"id": "2", "name": "B", "connectTo": "1"},
        ])
        with self.assertLogs("tasks.views", level="WARNING"):
            response = self.client.get("/api/gantt/pert")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["cycles"], [["1", "2", "1"]])

    def test_bulk_save_out_of_range_number_is_500_and_file_untouched(self):
        self.write_tree(sample_tree())
        before = self.data_file.read_bytes()
        with self.assertLogs("tasks.storage", level="ERROR"):
            response = self.client.post("/api/gantt/save", '[{"id": "1", "duration": 1e400}]',
                                        content_type="application/json")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(self.data_file.read_bytes(), before)
        self.assertEqual(self.client.get("/api/gantt/data").status_code, 200)

    def test_update_out_of_range_number_is_500(self):
        self.write_tree(sample_tree())
        with self.assertLogs("tasks.storage", level="ERROR"):
            response = self.client.post("/api/gantt/task/update", '{"id": "1", "duration": -1e400}',
                                        content_type="application/json")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "File write failed"})

    def test_pert_view_with_infinite_duration_text(self):
        self.write_tree([{"id": "1", "name": "A", "children": []}])
        response = self.client.post("/api/gantt/task/update", {"id": "1", "duration": "inf"}, format="json")
        self.assertEqual(response.status_code, 200)
        response = self.client.get("/api/gantt/pert")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"], [{"id": "1", "name": "A", "duration": 1.0}])

    def test_oversized_body_is_413_and_file_untouched(self):
        self.write_tree(sample_tree())
        before = self.data_file.read_bytes()
        body = [{"id": str(i), "name": "task %d" % i} for i in range(20)]
        with override_settings(DATA_UPLOAD_MAX_MEMORY_SIZE=64):
            response = self.client.post("/api/gantt/save", body, format="json")
        self.assertEqual(response.status_code, 413)
        self.assertEqual(self.data_file.read_bytes(), before)

    def test_body_within_limit_is_accepted(self):
        with override_settings(DATA_UPLOAD_MAX_MEMORY_SIZE=1024):
            response = self.client.post("/api/gantt/save", [{"id": "1"}], format="json")
        self.assertEqual(response.status_code, 200)

    def test_update_blank_id_is_404(self):
        self.write_tree(sample_tree())
        response = self.client.post("/api/gantt/task/update", {"id": "", "name": "x"}, format="json")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Task ID not found"})

    def test_update_id_is_not_trimmed(self):
        self.write_tree(sample_tree())
        response = self.client.post("/api/gantt/task/update", {"id": " 1 ", "name": "x"}, format="json")
        self.assertEqual(response.status_code, 404)

    def test_add_parent_id_is_not_trimmed(self):
        self.write_tree(sample_tree())
        before = self.data_file.read_bytes()
        response = self.client.post("/api/gantt/task/add", {"parentId": " 1 ", "name": "Sub"}, format="json")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.data_file.read_bytes(), before)
