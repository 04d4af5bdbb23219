"""
Integration tests for the sample adaptor.

Tests cover:
- Sample-specific fields and their update types
- Samples as the existence check for cohorts
"""

import pytest

from catalogdb.adaptors.sample import Sample
from catalogdb.errors import InvalidFieldValue
from catalogdb.query.model import Query


class TestSampleAdaptor:
    """Tests for SampleAdaptor."""

    @pytest.mark.asyncio
    async def test_boolean_and_integer_fields(self, catalog):
        await catalog.start()
        await catalog.samples.create(1, Sample(name="T1", somatic=True, individual_id=4))
        await catalog.samples.create(1, Sample(name="N1", somatic=False, individual_id=4))

        somatic = await catalog.samples.search(Query({"somatic": "true"}))
        assert [s.name for s in somatic.results] == ["T1"]
        assert await catalog.samples.count(Query({"individualId": ">=4"})) == 2

    @pytest.mark.asyncio
    async def test_update_types(self, catalog):
        await catalog.start()
        sample = await catalog.samples.create(1, Sample(name="S1", source="blood"))

        updated = await catalog.samples.update(sample.id, {"somatic": True, "individualId": 9})
        assert updated.somatic is True
        assert updated.individual_id == 9
        assert updated.source == "blood"

        with pytest.raises(InvalidFieldValue):
            await catalog.samples.update(sample.id, {"somatic": "yes"})
        with pytest.raises(InvalidFieldValue):
            await catalog.samples.update(sample.id, {"individualId": True})

    @pytest.mark.asyncio
    async def test_exists_any_status(self, catalog):
        """Deleted samples still satisfy cohort references."""
        await catalog.start()
        sample = await catalog.samples.create(1, Sample(name="S1"))
        await catalog.samples.delete(sample.id)

        assert await catalog.samples.exists(sample.id)
        assert await catalog.samples.count(Query()) == 0
