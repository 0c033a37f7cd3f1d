"""Unit tests for stage topology (hiring_pipeline/services/stages.py)."""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from hiring_pipeline.core.config import Settings
from hiring_pipeline.core.errors import ConflictError, NotFoundError, ValidationError
from hiring_pipeline.models.pipeline import StageInput, SubStageInput
from hiring_pipeline.services.stages import (
    build_stage_tree,
    delete_stage,
    get_stage_template,
    insert_stage,
    normalize_stages,
    reorder_stage,
    replace_stages,
)
from tests.fixtures.factories import create_stage_row, mock_db_with_conn


class TestStageTemplate:
    """Tests for get_stage_template."""

    def test_default_template(self, template):
        assert template.default_stages[0] == "Queue"
        assert template.rejected_stage == "Rejected"
        assert template.entry_stage == "Applied"
        assert template.is_mandatory("Screening")
        assert not template.is_mandatory("Interview")
        assert template.is_evaluable("Applied")
        assert template.default_position("Offer") == 6

    def test_template_follows_settings(self):
        config = Settings(
            database_url="postgresql://localhost/test",
            pipeline_default_stages=["New", "Review", "Declined"],
            pipeline_mandatory_stages=["Declined"],
            pipeline_rejected_stage="Declined",
            pipeline_entry_stage="New",
            pipeline_evaluable_stages=["New"],
        )

        template = get_stage_template(config)

        assert template.default_stages == ("New", "Review", "Declined")
        assert template.mandatory_stages == frozenset({"Declined"})


class TestNormalizeStages:
    """Tests for normalize_stages."""

    def test_empty_input_uses_template_defaults(self, template):
        result = normalize_stages(None, template)

        assert [s.name for s in result] == list(template.default_stages)
        assert [s.position for s in result] == list(range(len(template.default_stages)))
        assert all(s.is_default for s in result)
        assert {s.name for s in result if s.is_mandatory} == template.mandatory_stages

    def test_empty_list_is_same_as_none(self, template):
        assert normalize_stages([], template) == normalize_stages(None, template)

    def test_injects_missing_mandatory_stages_at_template_slot(self, template):
        result = normalize_stages(
            [StageInput(name="Applied"), StageInput(name="Interview")], template
        )

        assert [s.name for s in result] == [
            "Applied",
            "Interview",
            "Screening",
            "Shortlisted",
            "Offer",
            "Rejected",
        ]
        assert [s.position for s in result] == [0, 1, 2, 3, 4, 5]

    def test_orders_by_submitted_positions_and_renumbers(self, template):
        stages = [
            StageInput(name="Rejected", position=40),
            StageInput(name="Screening", position=10),
            StageInput(name="Offer", position=30),
            StageInput(name="Shortlisted", position=20),
        ]

        result = normalize_stages(stages, template)

        assert [(s.name, s.position) for s in result] == [
            ("Screening", 0),
            ("Shortlisted", 1),
            ("Offer", 2),
            ("Rejected", 3),
        ]

    def test_mandatory_flag_is_derived_from_name(self, template):
        result = normalize_stages([StageInput(name="Phone Screen")], template)

        by_name = {s.name: s for s in result}
        assert by_name["Phone Screen"].is_mandatory is False
        assert by_name["Rejected"].is_mandatory is True

    def test_mandatory_names_matched_case_insensitively(self, template):
        result = normalize_stages(
            [StageInput(name="Applied"), StageInput(name="screening"), StageInput(name="rejected")],
            template,
        )

        names = [s.name for s in result]
        assert names == ["Applied", "Screening", "Rejected", "Shortlisted", "Offer"]
        assert len({name.lower() for name in names}) == len(names)
        by_name = {s.name: s for s in result}
        assert by_name["Screening"].is_mandatory is True
        assert by_name["Rejected"].is_mandatory is True

    def test_sub_stages_are_ordered_and_renumbered(self, template):
        stages = [
            StageInput(
                name="Interview",
                sub_stages=[
                    SubStageInput(name="HR Round", position=7),
                    SubStageInput(name="Technical Round", position=2),
                ],
            )
        ]

        result = normalize_stages(stages, template)

        interview = next(s for s in result if s.name == "Interview")
        assert [(s.name, s.position) for s in interview.sub_stages] == [
            ("Technical Round", 0),
            ("HR Round", 1),
        ]
        assert all(not s.is_mandatory for s in interview.sub_stages)

    def test_accepts_camel_case_sub_stages(self, template):
        stage = StageInput.model_validate({"name": "Interview", "subStages": [{"name": "HR"}]})

        result = normalize_stages([stage], template)

        assert next(s for s in result if s.name == "Interview").sub_stages[0].name == "HR"

    def test_names_are_stripped(self, template):
        result = normalize_stages([StageInput(name="  Interview  ")], template)

        assert "Interview" in [s.name for s in result]

    def test_duplicate_names_rejected_case_insensitively(self, template):
        with pytest.raises(ValidationError) as exc_info:
            normalize_stages([StageInput(name="Interview"), StageInput(name="interview")], template)

        assert "pipeline_stages[1].name" in exc_info.value.fields

    def test_blank_name_rejected(self, template):
        with pytest.raises(ValidationError) as exc_info:
            normalize_stages([StageInput(name="  ")], template)

        assert exc_info.value.fields == {"pipeline_stages[0].name": ["Stage name is required"]}

    def test_negative_position_rejected(self, template):
        with pytest.raises(ValidationError) as exc_info:
            normalize_stages([StageInput(name="Interview", position=-1)], template)

        assert "pipeline_stages[0].position" in exc_info.value.fields

    def test_duplicate_sub_stage_names_rejected(self, template):
        stages = [
            StageInput(
                name="Interview",
                sub_stages=[SubStageInput(name="HR"), SubStageInput(name="hr")],
            )
        ]

        with pytest.raises(ValidationError) as exc_info:
            normalize_stages(stages, template)

        assert "pipeline_stages[0].sub_stages[1].name" in exc_info.value.fields


class TestBuildStageTree:
    """Tests for build_stage_tree."""

    def test_nests_sub_stages_under_parents(self):
        job_id = uuid4()
        interview = create_stage_row("Interview", 1, job_id=job_id)
        rows = [
            create_stage_row("Applied", 0, job_id=job_id),
            interview,
            create_stage_row("Technical Round", 0, job_id=job_id, parent_id=interview["stage_id"]),
            create_stage_row("HR Round", 1, job_id=job_id, parent_id=interview["stage_id"]),
        ]

        tree = build_stage_tree(rows)

        assert [s["name"] for s in tree] == ["Applied", "Interview"]
        assert tree[0]["sub_stages"] == []
        assert [s["name"] for s in tree[1]["sub_stages"]] == ["Technical Round", "HR Round"]


class TestReplaceStages:
    """Tests for replace_stages."""

    @pytest.mark.asyncio
    async def test_skipped_when_candidates_are_linked(self, template):
        conn = MagicMock()
        conn.fetchval = AsyncMock(return_value=2)
        conn.execute = AsyncMock()

        result = await replace_stages(conn, uuid4(), [StageInput(name="Interview")], template)

        assert result is False
        conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_deletes_and_rewrites_stages(self, template):
        job_id = uuid4()
        conn = MagicMock()
        # Candidate count, then one stage_id per inserted top-level stage
        conn.fetchval = AsyncMock(side_effect=[0] + [uuid4() for _ in range(5)])
        conn.execute = AsyncMock()

        result = await replace_stages(conn, job_id, [StageInput(name="Applied")], template)

        assert result is True
        conn.execute.assert_called_once_with(
            "DELETE FROM pipeline_stages WHERE job_id = $1", job_id
        )
        inserted = [call.args[2] for call in conn.fetchval.call_args_list[1:]]
        assert inserted == ["Applied", "Screening", "Shortlisted", "Offer", "Rejected"]

    @pytest.mark.asyncio
    async def test_invalid_stages_fail_before_delete(self, template):
        conn = MagicMock()
        conn.fetchval = AsyncMock(return_value=0)
        conn.execute = AsyncMock()

        with pytest.raises(ValidationError):
            await replace_stages(conn, uuid4(), [StageInput(name="")], template)

        conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_stages_ignored_when_candidates_are_linked(self, template):
        conn = MagicMock()
        conn.fetchval = AsyncMock(return_value=1)
        conn.execute = AsyncMock()

        result = await replace_stages(conn, uuid4(), [StageInput(name="")], template)

        assert result is False
        conn.execute.assert_not_called()


class TestInsertStage:
    """Tests for insert_stage."""

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, template):
        with pytest.raises(ValidationError):
            await insert_stage(uuid4(), "   ", template)

    @pytest.mark.asyncio
    async def test_negative_position_rejected(self, template):
        with pytest.raises(ValidationError):
            await insert_stage(uuid4(), "Interview", template, position=-2)

    @pytest.mark.asyncio
    async def test_conflict_when_candidates_linked(self, template):
        job_id = uuid4()
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value={"job_id": job_id})
        conn.fetchval = AsyncMock(return_value=3)

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            with pytest.raises(ConflictError):
                await insert_stage(job_id, "Interview", template)

    @pytest.mark.asyncio
    async def test_missing_job(self, template):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=None)

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            with pytest.raises(NotFoundError):
                await insert_stage(uuid4(), "Interview", template)

    @pytest.mark.asyncio
    async def test_appends_and_shifts_siblings(self, template):
        job_id = uuid4()
        created = create_stage_row("Phone Screen", 2, job_id=job_id)
        conn = MagicMock()
        conn.fetchrow = AsyncMock(side_effect=[{"job_id": job_id}, created])
        # Linked candidates, duplicate check, sibling count
        conn.fetchval = AsyncMock(side_effect=[0, None, 9])
        conn.execute = AsyncMock()

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            result = await insert_stage(job_id, "Phone Screen", template, position=2)

        assert result["name"] == "Phone Screen"
        shift_args = conn.execute.call_args.args
        assert "position = position + 1" in shift_args[0]
        assert shift_args[1:] == (job_id, None, 2)
        # Mandatory flag
        assert conn.fetchrow.call_args.args[-1] is False

    @pytest.mark.asyncio
    async def test_mandatory_name_takes_template_spelling(self, template):
        job_id = uuid4()
        conn = MagicMock()
        conn.fetchrow = AsyncMock(
            side_effect=[{"job_id": job_id}, create_stage_row("Offer", 0, job_id=job_id)]
        )
        conn.fetchval = AsyncMock(side_effect=[0, None, 0])
        conn.execute = AsyncMock()

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            await insert_stage(job_id, "offer", template)

        insert_args = conn.fetchrow.call_args.args
        assert insert_args[3] == "Offer"
        assert insert_args[-1] is True

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, template):
        job_id = uuid4()
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value={"job_id": job_id})
        conn.fetchval = AsyncMock(side_effect=[0, 1])

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            with pytest.raises(ValidationError) as exc_info:
                await insert_stage(job_id, "Interview", template)

        assert exc_info.value.fields == {"name": ["Duplicate stage name: Interview"]}

    @pytest.mark.asyncio
    async def test_nested_sub_stage_rejected(self, template):
        job_id = uuid4()
        conn = MagicMock()
        conn.fetchrow = AsyncMock(side_effect=[{"job_id": job_id}, {"parent_id": uuid4()}])
        conn.fetchval = AsyncMock(return_value=0)

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            with pytest.raises(ValidationError) as exc_info:
                await insert_stage(job_id, "Deep", template, parent_id=uuid4())

        assert "parent_id" in exc_info.value.fields


class TestReorderStage:
    """Tests for reorder_stage."""

    @pytest.mark.asyncio
    async def test_negative_position_rejected(self):
        with pytest.raises(ValidationError):
            await reorder_stage(uuid4(), -1)

    @pytest.mark.asyncio
    async def test_move_earlier_shifts_range_right(self):
        job_id = uuid4()
        stage = create_stage_row("Interview", 4, job_id=job_id)
        conn = MagicMock()
        conn.fetchrow = AsyncMock(
            side_effect=[stage, {"job_id": job_id}, stage | {"position": 1}]
        )
        conn.fetchval = AsyncMock(side_effect=[0, 6])
        conn.execute = AsyncMock()

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            result = await reorder_stage(stage["stage_id"], 1)

        assert result["position"] == 1
        shift = conn.execute.call_args.args
        assert "position = position + 1" in shift[0]
        assert shift[1:] == (job_id, None, 1, 4)

    @pytest.mark.asyncio
    async def test_position_past_end_is_clamped(self):
        job_id = uuid4()
        stage = create_stage_row("Interview", 1, job_id=job_id)
        conn = MagicMock()
        conn.fetchrow = AsyncMock(
            side_effect=[stage, {"job_id": job_id}, stage | {"position": 5}]
        )
        conn.fetchval = AsyncMock(side_effect=[0, 6])
        conn.execute = AsyncMock()

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            await reorder_stage(stage["stage_id"], 99)

        shift = conn.execute.call_args.args
        assert "position = position - 1" in shift[0]
        assert shift[1:] == (job_id, None, 1, 5)
        assert conn.fetchrow.call_args.args[-1] == 5


class TestDeleteStage:
    """Tests for delete_stage."""

    @pytest.mark.asyncio
    async def test_mandatory_stage_cannot_be_deleted(self):
        stage = create_stage_row("Rejected", 8, is_mandatory=True)
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=stage)
        conn.execute = AsyncMock()

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            with pytest.raises(ConflictError, match="Mandatory stage 'Rejected'"):
                await delete_stage(stage["stage_id"])

        conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_stage(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=None)

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            with pytest.raises(NotFoundError):
                await delete_stage(uuid4())

    @pytest.mark.asyncio
    async def test_deletes_and_closes_gap(self):
        job_id = uuid4()
        stage = create_stage_row("Interview", 3, job_id=job_id)
        conn = MagicMock()
        conn.fetchrow = AsyncMock(side_effect=[stage, {"job_id": job_id}])
        conn.fetchval = AsyncMock(return_value=0)
        conn.execute = AsyncMock()

        with patch("hiring_pipeline.services.stages.db", mock_db_with_conn(conn)):
            await delete_stage(stage["stage_id"])

        delete_call, shift_call = conn.execute.call_args_list
        assert delete_call.args == (
            "DELETE FROM pipeline_stages WHERE stage_id = $1",
            stage["stage_id"],
        )
        assert "position = position - 1" in shift_call.args[0]
        assert shift_call.args[1:] == (job_id, None, 3)
