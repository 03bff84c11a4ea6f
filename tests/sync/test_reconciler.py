"""Tests for file-to-store reconciliation."""

import logging
import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from vault_kanban.board import compute_fingerprint, content_hash, parse_tasks
from vault_kanban.core.config import BoardConfig
from vault_kanban.store import Card, SqliteCardStore
from vault_kanban.sync.reconciler import ReconcileResult, Reconciler


@pytest.fixture
def reconciler(store: SqliteCardStore, vault: Path, sequential_ids) -> Reconciler:
    return Reconciler(store, vault, minter=sequential_ids)


def write(path: Path, text: str) -> None:
    path.write_bytes(text.encode("utf-8"))


def read(path: Path) -> str:
    return path.read_bytes().decode("utf-8")


def counts(result: ReconcileResult) -> tuple[int, int, int, int]:
    return result.added, result.updated, result.removed, result.migrated


class TestFreshBoard:
    """Reconciling a file into an empty store."""

    def test_two_tasks_added_and_stamped(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path
    ) -> None:
        write(board_file, "- [ ] Buy milk\n- [ ] Walk dog\n")

        result = reconciler.reconcile(board)

        assert counts(result) == (2, 0, 0, 0)
        assert read(board_file).count("kb:id=") == 2

    def test_sequence_numbers_follow_file_order(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(board_file, "".join(f"- [ ] Task {i}\n" for i in range(6)))

        result = reconciler.reconcile(board)

        cards = sorted(store.list_cards(board.id), key=lambda c: c.line_number)
        assert result.added == 6
        assert [c.seq_id for c in cards] == [1, 2, 3, 4, 5, 6]
        assert len({c.id for c in cards}) == 6
        assert [c.title for c in cards] == [f"Task {i}" for i in range(6)]

    def test_stamped_lines_reference_stored_cards(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(board_file, "# Work\n\n- [ ] Buy milk\n")

        reconciler.reconcile(board)

        task = parse_tasks(read(board_file))[0]
        card = store.get_card(task.card_id)
        assert card is not None
        assert card.raw_line == task.raw_line
        assert card.line_number == 3

    def test_fields_copied_from_task(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(board_file, "- [x] 🔺 Ship release\n  notes here\n")

        reconciler.reconcile(board)

        card = store.list_cards(board.id)[0]
        assert card.title == "Ship release"
        assert card.priority == "urgent"
        assert card.is_done is True
        assert card.column == "Done"
        assert card.sub_items == ["notes here"]

    def test_valid_column_hint_used_for_new_card(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(board_file, "- [ ] Review <!-- kb:id=abcdef12 kb:col=In+Progress -->\n")

        reconciler.reconcile(board)

        card = store.get_card("abcdef12")
        assert card is not None
        assert card.column == "In Progress"

    def test_unknown_column_hint_falls_back_to_backlog(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(board_file, "- [ ] Review <!-- kb:id=abcdef12 kb:col=Nowhere -->\n")

        reconciler.reconcile(board)

        card = store.get_card("abcdef12")
        assert card is not None
        assert card.column == "Backlog"

    def test_result_wire_shape(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path
    ) -> None:
        write(board_file, "- [ ] One\n")

        assert reconciler.reconcile(board).to_dict() == {
            "boardId": "work",
            "added": 1,
            "updated": 0,
            "removed": 0,
            "migrated": 0,
        }


class TestIdempotence:
    """Unchanged files do no work."""

    def test_second_pass_is_noop(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path
    ) -> None:
        write(board_file, "- [ ] Buy milk\n- [ ] Walk dog\n")
        reconciler.reconcile(board)
        stamped = read(board_file)

        with patch("vault_kanban.sync.reconciler.atomic_write_text") as writer:
            result = reconciler.reconcile(board)

        assert counts(result) == (0, 0, 0, 0)
        writer.assert_not_called()
        assert read(board_file) == stamped

    def test_forced_pass_counts_only_real_changes(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path
    ) -> None:
        write(board_file, "- [ ] Buy milk\n- [ ] Walk dog\n")
        reconciler.reconcile(board)

        result = reconciler.reconcile(board, force=True)

        assert counts(result) == (0, 0, 0, 0)

    def test_stamping_preserves_parsed_fields(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path
    ) -> None:
        original = (
            "---\ntags: [work]\n---\n"
            "- [ ] 🔺 Ship release\n"
            "- [x] Read [post](https://blog.example/p)\n"
            "\t- sub item\n"
            "- [ ] Ship release\n"
        )
        write(board_file, original)

        reconciler.reconcile(board)

        def summary(text: str) -> list[tuple[str, bool, str | None, list[str]]]:
            return [(t.title, t.is_done, t.priority, t.urls) for t in parse_tasks(text)]

        assert summary(read(board_file)) == summary(original)

    def test_crlf_line_endings_survive_stamping(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path
    ) -> None:
        write(board_file, "- [ ] A\r\n- [ ] B\r\n")

        reconciler.reconcile(board)

        assert read(board_file) == (
            "- [ ] A <!-- kb:id=00000001 -->\r\n- [ ] B <!-- kb:id=00000002 -->\r\n"
        )


class TestIdentityResolution:
    """Marker adoption, collision repair and legacy migration."""

    def test_duplicate_marker_gets_fresh_id(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(
            board_file,
            "- [ ] One <!-- kb:id=aaaaaaaa -->\n- [ ] One copy <!-- kb:id=aaaaaaaa -->\n",
        )

        result = reconciler.reconcile(board)

        tasks = parse_tasks(read(board_file))
        assert result.added == 2
        assert tasks[0].card_id == "aaaaaaaa"
        assert tasks[1].card_id == "00000001"
        assert store.all_card_ids() == {"aaaaaaaa", "00000001"}

    def test_malformed_marker_ids_are_replaced(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(
            board_file,
            "- [ ] Hand written <!-- kb:id=Task_1 kb:col=In+Progress -->\n"
            "- [ ] Other <!-- kb:id=x -->\n",
        )

        result = reconciler.reconcile(board)

        assert result.added == 2
        assert store.all_card_ids() == {"00000001", "00000002"}
        assert read(board_file) == (
            "- [ ] Hand written <!-- kb:id=00000001 kb:col=In+Progress -->\n"
            "- [ ] Other <!-- kb:id=00000002 -->\n"
        )
        card = store.get_card("00000001")
        assert card is not None
        assert card.column == "In Progress"

    def test_duplicate_ids_stable_after_repair(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path
    ) -> None:
        write(board_file, "- [ ] X <!-- kb:id=aaaaaaaa -->\n- [ ] Y <!-- kb:id=aaaaaaaa -->\n")
        reconciler.reconcile(board)
        first = [t.card_id for t in parse_tasks(read(board_file))]

        reconciler.reconcile(board, force=True)

        assert [t.card_id for t in parse_tasks(read(board_file))] == first

    def test_cross_board_marker_is_replaced(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        foreign = Card(
            id="aaaaaaaa",
            board_id="home",
            column="Backlog",
            title="Mow lawn",
            raw_line="- [ ] Mow lawn <!-- kb:id=aaaaaaaa -->",
            line_number=1,
            seq_id=1,
        )
        store.insert_card(foreign)
        write(board_file, "- [ ] Pasted <!-- kb:id=aaaaaaaa -->\n")

        result = reconciler.reconcile(board)

        assert result.added == 1
        assert parse_tasks(read(board_file))[0].card_id == "00000001"
        untouched = store.get_card("aaaaaaaa")
        assert untouched is not None
        assert untouched.board_id == "home"
        assert untouched.title == "Mow lawn"

    def test_legacy_fingerprint_migrates_existing_card(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        legacy_id = compute_fingerprint("Buy milk", board.id)
        store.insert_card(
            Card(
                id=legacy_id,
                board_id=board.id,
                column="In Progress",
                title="Buy milk",
                raw_line="- [ ] Buy milk",
                line_number=1,
                seq_id=1,
            )
        )
        write(board_file, "- [ ] buy  MILK\n")

        result = reconciler.reconcile(board)

        assert result.migrated == 1
        assert result.added == 0
        card = store.get_card(legacy_id)
        assert card is not None
        assert card.column == "In Progress"
        assert parse_tasks(read(board_file))[0].card_id == legacy_id

    def test_repeated_titles_use_occurrence_fingerprints(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        for occurrence, column in ((0, "Backlog"), (1, "In Progress")):
            store.insert_card(
                Card(
                    id=compute_fingerprint("Standup", board.id, occurrence),
                    board_id=board.id,
                    column=column,
                    title="Standup",
                    raw_line="- [ ] Standup",
                    line_number=occurrence + 1,
                    seq_id=occurrence + 1,
                )
            )
        write(board_file, "- [ ] Standup\n- [ ] Standup\n")

        result = reconciler.reconcile(board)

        assert result.migrated == 2
        ids = [t.card_id for t in parse_tasks(read(board_file))]
        assert ids == [
            compute_fingerprint("Standup", board.id, 0),
            compute_fingerprint("Standup", board.id, 1),
        ]


class TestUpdates:
    """Existing cards follow file edits."""

    def _seed(self, reconciler: Reconciler, board: BoardConfig, board_file: Path) -> str:
        write(board_file, "- [ ] Task\n")
        reconciler.reconcile(board)
        return read(board_file)

    def test_tick_moves_card_to_done(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        stamped = self._seed(reconciler, board, board_file)
        write(board_file, stamped.replace("- [ ]", "- [x]"))

        result = reconciler.reconcile(board)

        card = store.get_card("00000001")
        assert result.updated == 1
        assert card is not None
        assert card.is_done is True
        assert card.column == "Done"

    def test_untick_moves_card_to_backlog(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        stamped = self._seed(reconciler, board, board_file)
        write(board_file, stamped.replace("- [ ]", "- [x]"))
        reconciler.reconcile(board)
        write(board_file, stamped)

        reconciler.reconcile(board)

        card = store.get_card("00000001")
        assert card is not None
        assert card.is_done is False
        assert card.column == "Backlog"

    def test_manual_column_survives_title_edit(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        stamped = self._seed(reconciler, board, board_file)
        card = store.get_card("00000001")
        assert card is not None
        store.update_card(card.model_copy(update={"column": "In Progress"}))
        write(board_file, stamped.replace("Task", "Renamed task"))

        result = reconciler.reconcile(board)

        updated = store.get_card("00000001")
        assert result.updated == 1
        assert updated is not None
        assert updated.title == "Renamed task"
        assert updated.column == "In Progress"

    def test_tick_in_custom_done_column_keeps_column(
        self, store: SqliteCardStore, vault: Path, sequential_ids
    ) -> None:
        board = BoardConfig(
            id="ship",
            name="Ship",
            file="ship.md",
            columns=["Todo", "Shipped", "Done"],
            done_columns=["Shipped"],
        )
        reconciler = Reconciler(store, vault, minter=sequential_ids)
        path = board.source_path(vault)
        write(path, "- [ ] Release\n")
        reconciler.reconcile(board)
        card = store.get_card("00000001")
        assert card is not None
        store.update_card(card.model_copy(update={"column": "Shipped"}))
        write(path, read(path).replace("- [ ]", "- [x]"))

        reconciler.reconcile(board)

        done = store.get_card("00000001")
        assert done is not None
        assert done.is_done is True
        assert done.column == "Shipped"


class TestDeletionGuards:
    """Removal of vanished lines and the bulk-deletion guards."""

    def _seed(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path, n: int
    ) -> list[str]:
        write(board_file, "".join(f"- [ ] Task {i}\n" for i in range(n)))
        reconciler.reconcile(board)
        return read(board_file).splitlines(keepends=True)

    def test_vanished_line_removed(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        lines = self._seed(reconciler, board, board_file, 3)
        write(board_file, "".join(lines[:2]))

        result = reconciler.reconcile(board)

        assert result.removed == 1
        assert len(store.list_cards(board.id)) == 2

    def test_bulk_delete_refused(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        lines = self._seed(reconciler, board, board_file, 10)
        write(board_file, lines[0])

        with caplog.at_level(logging.ERROR):
            result = reconciler.reconcile(board)

        assert result.removed == 0
        assert len(store.list_cards(board.id)) == 10
        assert "SAFETY" in caplog.text

    def test_empty_file_refused(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        self._seed(reconciler, board, board_file, 2)
        write(board_file, "")

        result = reconciler.reconcile(board)

        assert result.removed == 0
        assert len(store.list_cards(board.id)) == 2

    def test_force_allows_bulk_delete(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        lines = self._seed(reconciler, board, board_file, 10)
        write(board_file, lines[0])

        result = reconciler.reconcile(board, force=True)

        assert result.removed == 9
        assert len(store.list_cards(board.id)) == 1

    def test_force_still_refuses_empty_file(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        self._seed(reconciler, board, board_file, 6)
        write(board_file, "# nothing here\n")

        result = reconciler.reconcile(board, force=True)

        assert result.removed == 0
        assert len(store.list_cards(board.id)) == 6

    def test_other_boards_not_touched(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        other_board: BoardConfig,
        vault: Path,
        board_file: Path,
    ) -> None:
        write(other_board.source_path(vault), "- [ ] Mow lawn\n")
        reconciler.reconcile(other_board)
        lines = self._seed(reconciler, board, board_file, 2)
        write(board_file, lines[0])

        reconciler.reconcile(board)

        assert len(store.list_cards(other_board.id)) == 1


class TestMarkerStamping:
    """Fresh re-read and patching of stamped lines."""

    def test_line_moved_since_parse_is_found(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(board_file, "intro\n- [ ] A\n")

        reconciler.reconcile(board, content="- [ ] A\n")

        assert read(board_file) == "intro\n- [ ] A <!-- kb:id=00000001 -->\n"
        card = store.get_card("00000001")
        assert card is not None
        assert card.line_number == 2

    def test_line_changed_since_parse_is_skipped(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        write(board_file, "- [ ] Changed\n")
        parsed = "- [ ] Original\n"

        with caplog.at_level(logging.WARNING):
            result = reconciler.reconcile(board, content=parsed)

        assert result.added == 1
        assert read(board_file) == "- [ ] Changed\n"
        assert "skipping" in caplog.text
        state = store.get_sync_state(str(board_file))
        assert state is not None
        assert state.file_hash == content_hash(parsed)

    def test_post_patch_hash_recorded(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(board_file, "- [ ] A\n")

        reconciler.reconcile(board)

        state = store.get_sync_state(str(board_file))
        assert state is not None
        assert state.file_hash == content_hash(read(board_file))

    def test_write_failure_leaves_sync_state_for_retry(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
    ) -> None:
        write(board_file, "- [ ] A\n")

        with patch(
            "vault_kanban.sync.reconciler.atomic_write_text", side_effect=OSError("read-only")
        ):
            result = reconciler.reconcile(board)

        assert result.added == 1
        assert read(board_file) == "- [ ] A\n"
        assert store.get_sync_state(str(board_file)) is None

        reconciler.reconcile(board)

        assert "kb:id=" in read(board_file)

    def test_writes_are_suppressed(
        self, reconciler: Reconciler, board: BoardConfig, board_file: Path
    ) -> None:
        write(board_file, "- [ ] A\n")
        seen: list[bool] = []

        def spy(path: Path, content: str) -> None:
            seen.append(reconciler.suppressor.is_suppressed(path))
            path.write_text(content, encoding="utf-8")

        with patch("vault_kanban.sync.reconciler.atomic_write_text", side_effect=spy):
            reconciler.reconcile(board)

        assert seen == [True]
        assert not reconciler.suppressor.is_suppressed(board_file)


class TestFailures:
    """Errors are reported as zero counts, never raised."""

    def test_missing_file(
        self,
        reconciler: Reconciler,
        board: BoardConfig,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.ERROR):
            result = reconciler.reconcile(board)

        assert counts(result) == (0, 0, 0, 0)
        assert "not found" in caplog.text

    def test_reconcile_all_continues_past_failures(
        self,
        reconciler: Reconciler,
        board: BoardConfig,
        other_board: BoardConfig,
        vault: Path,
    ) -> None:
        write(other_board.source_path(vault), "- [ ] Mow lawn\n")

        results = reconciler.reconcile_all([board, other_board])

        assert [r.board_id for r in results] == ["work", "home"]
        assert [r.added for r in results] == [0, 1]

    def test_store_commit_failure_is_reported(
        self,
        reconciler: Reconciler,
        store: SqliteCardStore,
        board: BoardConfig,
        board_file: Path,
        locked_commit: sqlite3.Connection,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        write(board_file, "- [ ] Buy milk\n")

        with caplog.at_level(logging.ERROR):
            result = reconciler.reconcile(board)

        assert counts(result) == (0, 0, 0, 0)
        assert "database is locked" in caplog.text
        assert store.list_cards(board.id) == []
        assert read(board_file) == "- [ ] Buy milk\n"
