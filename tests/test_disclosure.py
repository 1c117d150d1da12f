"""Tests for budgeted progressive skill disclosure."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List
from unittest.mock import PropertyMock, patch

import pytest

from pack_sentinel.bridge.disclosure import (
    DisclosureChunk,
    WithheldMarker,
    approx_tokens,
    disclose,
)
from pack_sentinel.manifest import ReferenceDoc, SkillDef, load_manifest


def _skill(*sizes: int, summary: str = "summary") -> SkillDef:
    refs = tuple(ReferenceDoc.from_text(f"ref{i}", "x" * size) for i, size in enumerate(sizes))
    return SkillDef(name="dhh-rails-style", description="d", summary=summary, references=refs)


def _chunks(items: List) -> List[DisclosureChunk]:
    return [i for i in items if isinstance(i, DisclosureChunk)]


class TestDisclose:
    def test_summary_first_then_fitting_references(self) -> None:
        items = list(disclose(_skill(100, 200, 50), 260))
        assert [(i.kind, i.topic) for i in _chunks(items)] == [
            ("summary", None),
            ("reference", "ref0"),
            ("reference", "ref2"),
        ]
        marker = items[-1]
        assert isinstance(marker, WithheldMarker)
        assert marker.withheld == ("ref1",)
        assert marker.used == 150
        assert marker.budget == 260
        assert not marker.complete

    def test_budget_never_exceeded(self) -> None:
        skill = _skill(40, 70, 10, 90, 25, 5)
        for budget in range(0, 260, 7):
            items = list(disclose(skill, budget))
            refs = [c for c in _chunks(items) if c.kind == "reference"]
            assert sum(c.size for c in refs) <= budget
            assert items[-1].used == sum(c.size for c in refs)

    def test_summary_exempt_from_budget(self) -> None:
        items = list(disclose(_skill(10, summary="s" * 500), 0))
        assert items[0].kind == "summary"
        assert items[0].size == 500
        assert items[-1].withheld == ("ref0",)

    def test_everything_fits(self) -> None:
        items = list(disclose(_skill(10, 20), 1000))
        assert len(_chunks(items)) == 3
        assert items[-1].complete
        assert "All requested" in items[-1].describe()

    def test_no_references(self) -> None:
        items = list(disclose(_skill(), 10))
        assert [type(i) for i in items] == [DisclosureChunk, WithheldMarker]
        assert items[-1].complete

    def test_declared_order_preserved(self) -> None:
        items = list(disclose(_skill(5, 5, 5), 100))
        assert [c.topic for c in _chunks(items)[1:]] == ["ref0", "ref1", "ref2"]

    def test_topic_filter(self) -> None:
        items = list(disclose(_skill(10, 10, 10), 100, topics=["REF1"]))
        assert [c.topic for c in _chunks(items)[1:]] == ["ref1"]
        assert items[-1].complete

    def test_token_measure(self) -> None:
        assert approx_tokens(10) == 3
        items = list(disclose(_skill(10, 10), 5, measure="tokens"))
        refs = [c for c in _chunks(items) if c.kind == "reference"]
        assert [c.size for c in refs] == [3]
        assert items[-1].withheld == ("ref1",)

    def test_custom_measure(self) -> None:
        items = list(disclose(_skill(10, 10), 1, measure=lambda size: 1))
        assert items[-1].withheld == ("ref1",)

    def test_negative_budget(self) -> None:
        with pytest.raises(ValueError):
            disclose(_skill(10), -1)

    def test_describe_lists_withheld(self) -> None:
        marker = list(disclose(_skill(10, 10), 10))[-1]
        assert "ref1" in marker.describe()
        assert "budget 10" in marker.describe()

    def test_bodies_read_lazily(self) -> None:
        skill = _skill(4, 4)
        with patch.object(ReferenceDoc, "body", new_callable=PropertyMock) as body:
            body.return_value = "xxxx"
            stream = disclose(skill, 100)
            first = next(stream)
            assert first.kind == "summary"
            assert body.call_count == 0
            next(stream)
            assert body.call_count == 1
            rest = list(stream)
        assert body.call_count == 2
        assert isinstance(rest[-1], WithheldMarker)


class TestDiscloseFromDisk:
    def test_loaded_skill(self, pack_root: Path) -> None:
        (skill,) = [s for s in load_manifest([pack_root]).skills if s.name == "dhh-rails-style"]
        controllers = skill.references[0].size
        items = list(disclose(skill, controllers))
        chunks = _chunks(items)
        assert chunks[0].body == skill.summary
        assert chunks[1].topic == "controllers"
        assert "RESTful" in chunks[1].body
        assert items[-1].withheld == ("models",)

    def test_grown_file_is_withheld(self, pack_root: Path) -> None:
        (skill,) = [s for s in load_manifest([pack_root]).skills if s.name == "dhh-rails-style"]
        ref = skill.references[0]
        Path(ref.path).write_text("x" * (ref.size + 100), encoding="utf-8")
        items = list(disclose(skill, ref.size, topics=["controllers"]))
        assert len(_chunks(items)) == 1
        assert items[-1].withheld == ("controllers",)

    def test_deleted_file_is_withheld(self, pack_root: Path, caplog) -> None:
        (skill,) = [s for s in load_manifest([pack_root]).skills if s.name == "dhh-rails-style"]
        Path(skill.references[0].path).unlink()
        with caplog.at_level(logging.WARNING, logger="pack_sentinel.bridge.disclosure"):
            items = list(disclose(skill, 10_000))
        assert [c.topic for c in _chunks(items)] == [None, "models"]
        assert isinstance(items[-1], WithheldMarker)
        assert items[-1].withheld == ("controllers",)
        assert "cannot read reference 'controllers'" in caplog.text
