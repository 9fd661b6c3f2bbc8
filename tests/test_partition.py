"""Test shard partitioning and shard mode resolution."""

import pytest

from conftest import make_plan
from flowshard.executor.errors import ConfigurationError, InsufficientDevicesError
from flowshard.executor.partition import ShardPartitioner, resolve_shard_mode
from flowshard.executor.types import ShardMode


@pytest.fixture
def partitioner():
    return ShardPartitioner()


# ===========================================================================
# SHARD MODE
# ===========================================================================


class TestResolveShardMode:

    def test_defaults_to_one_unsharded(self):
        assert resolve_shard_mode() == (ShardMode.NONE, 1, [])

    def test_split(self):
        mode, requested, warnings = resolve_shard_mode(shard_split=3)
        assert (mode, requested, warnings) == (ShardMode.SPLIT, 3, [])

    def test_all(self):
        mode, requested, _ = resolve_shard_mode(shard_all=2)
        assert (mode, requested) == (ShardMode.ALL, 2)

    def test_legacy_shards_map_to_split_with_warning(self):
        mode, requested, warnings = resolve_shard_mode(legacy_shards=4)
        assert (mode, requested) == (ShardMode.SPLIT, 4)
        assert len(warnings) == 1
        assert "deprecated" in warnings[0]

    def test_split_and_all_are_exclusive(self):
        with pytest.raises(ConfigurationError, match="mutually exclusive"):
            resolve_shard_mode(shard_split=2, shard_all=2)


# ===========================================================================
# SPLIT
# ===========================================================================


class TestSplit:

    def test_ten_flows_three_shards(self, partitioner):
        plan = make_plan(10)
        result = partitioner.plan(plan, 3, ShardMode.SPLIT, device_count=3)

        assert result.effective_shards == 3
        assert [len(c.flows_to_run) for c in result.chunk_plans] == [4, 3, 3]

    def test_flows_dealt_by_index(self, partitioner):
        plan = make_plan(7)
        result = partitioner.plan(plan, 3, ShardMode.SPLIT, device_count=3)

        for shard, chunk in enumerate(result.chunk_plans):
            expected = [f for j, f in enumerate(plan.flows_to_run) if j % 3 == shard]
            assert list(chunk.flows_to_run) == expected

    def test_every_flow_exactly_once(self, partitioner):
        plan = make_plan(11)
        result = partitioner.plan(plan, 4, ShardMode.SPLIT, device_count=4)

        seen = [f for chunk in result.chunk_plans for f in chunk.flows_to_run]
        assert sorted(seen, key=str) == sorted(plan.flows_to_run, key=str)
        sizes = [len(c.flows_to_run) for c in result.chunk_plans]
        assert max(sizes) - min(sizes) <= 1

    def test_chunks_keep_workspace_config(self, partitioner):
        plan = make_plan(4)
        result = partitioner.plan(plan, 2, ShardMode.SPLIT, device_count=2)
        assert all(c.workspace_config is plan.workspace_config for c in result.chunk_plans)

    def test_shards_capped_at_flow_count(self, partitioner):
        plan = make_plan(2)
        result = partitioner.plan(plan, 5, ShardMode.SPLIT, device_count=5)

        assert result.effective_shards == 2
        assert result.warnings == [
            "Requested 5 shards, but it cannot be higher than the number of flows (2). "
            "Will use 2 shards instead."
        ]

    def test_unsharded_is_one_chunk(self, partitioner):
        plan = make_plan(3)
        result = partitioner.plan(plan, 1, ShardMode.NONE, device_count=2)

        assert result.effective_shards == 1
        assert result.chunk_plans[0].flows_to_run == plan.flows_to_run


# ===========================================================================
# ALL
# ===========================================================================


class TestAll:

    def test_every_shard_gets_full_plan(self, partitioner):
        plan = make_plan(3)
        result = partitioner.plan(plan, 2, ShardMode.ALL, device_count=2)

        assert result.effective_shards == 2
        assert all(c.flows_to_run == plan.flows_to_run for c in result.chunk_plans)
        assert result.chunk_plans[0] is not result.chunk_plans[1]

    def test_all_may_exceed_flow_count(self, partitioner):
        plan = make_plan(1)
        result = partitioner.plan(plan, 3, ShardMode.ALL, device_count=3)
        assert result.effective_shards == 3


# ===========================================================================
# SEQUENCES AND ERRORS
# ===========================================================================


class TestSequencesAndErrors:

    @pytest.mark.parametrize("requested", [1, 2, 5])
    def test_sequence_only_is_single_shard(self, partitioner, requested):
        plan = make_plan(0, sequence=3)
        result = partitioner.plan(plan, requested, ShardMode.SPLIT, device_count=0)

        assert result.effective_shards == 1
        assert result.chunk_plans == [plan]

    def test_sharded_mixed_plan_is_rejected(self, partitioner):
        plan = make_plan(3, sequence=1)
        with pytest.raises(ConfigurationError, match="sequential execution"):
            partitioner.plan(plan, 2, ShardMode.SPLIT, device_count=2)

    def test_unsharded_mixed_plan_is_allowed(self, partitioner):
        plan = make_plan(3, sequence=1)
        result = partitioner.plan(plan, 1, ShardMode.NONE, device_count=1)
        assert result.effective_shards == 1

    def test_empty_plan(self, partitioner):
        with pytest.raises(ConfigurationError, match="No flows"):
            partitioner.plan(make_plan(0), 1, ShardMode.NONE, device_count=1)

    def test_not_enough_devices(self, partitioner):
        with pytest.raises(InsufficientDevicesError) as exc_info:
            partitioner.plan(make_plan(10), 5, ShardMode.SPLIT, device_count=3)

        assert exc_info.value.required == 5
        assert exc_info.value.available == 3
        assert exc_info.value.missing == 2

    def test_non_positive_shards(self, partitioner):
        with pytest.raises(ConfigurationError):
            partitioner.plan(make_plan(2), 0, ShardMode.SPLIT, device_count=2)

    def test_validate_needs_no_devices(self, partitioner):
        partitioner.validate(make_plan(4), 3)
        partitioner.validate(make_plan(0, sequence=2), 3)
        with pytest.raises(ConfigurationError, match="sequential execution"):
            partitioner.validate(make_plan(2, sequence=1), 2)
        with pytest.raises(ConfigurationError, match="No flows"):
            partitioner.validate(make_plan(0), 1)
        with pytest.raises(ConfigurationError, match="must be positive"):
            partitioner.validate(make_plan(2), 0)


# ===========================================================================
# DESCRIBE
# ===========================================================================


class TestDescribe:

    def test_split_approximate(self):
        message = ShardPartitioner.describe(ShardMode.SPLIT, 3, 10)
        assert message == "Will split 10 flows across 3 shards (approx. 3 flows per shard)"

    def test_split_exact(self):
        message = ShardPartitioner.describe(ShardMode.SPLIT, 2, 6)
        assert message == "Will split 6 flows across 2 shards (3 flows per shard)"

    def test_split_rounds_half_up(self):
        assert "(approx. 3 flows per shard)" in ShardPartitioner.describe(ShardMode.SPLIT, 2, 5)

    def test_all(self):
        message = ShardPartitioner.describe(ShardMode.ALL, 2, 4)
        assert message == "Will run 2 shards, with all 4 flows in each shard"

    def test_unsharded_has_no_message(self):
        assert ShardPartitioner.describe(ShardMode.NONE, 1, 4) is None
