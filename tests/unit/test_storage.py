import json
from pathlib import Path

import pytest

from src.pipeline.storage import (
    CheckpointStore,
    SourceFileError,
    load_links,
    save_links,
    write_json_atomic,
)
from src.schemas import EntityLink, SchoolRecord


def rec(url_suffix, email="Not found", found=False):
    return SchoolRecord(
        url=f"https://diplomeo.com/etablissement-{url_suffix}",
        name=f"Ecole {url_suffix}",
        email=email,
        email_found=found,
    )


def test_batch_paths_and_numeric_ordering(tmp_path: Path):
    store = CheckpointStore(tmp_path)
    for n in (10, 2, 1):
        store.save_batch(n, [rec(str(n))])
    (tmp_path / "schools_data_batch_x.json").write_text("[]", encoding="utf-8")
    assert [n for n, _ in store.list_batches()] == [1, 2, 10]
    assert store.batch_path(3).name == "schools_data_batch_3.json"


def test_load_merged_prefers_main_output_then_batches_in_order(tmp_path: Path):
    store = CheckpointStore(tmp_path)
    store.save_output([rec("a", "a@main.fr", True)])
    store.save_batch(2, [rec("a", "a@batch2.fr", True), rec("c")])
    store.save_batch(1, [rec("b"), rec("c", "c@batch1.fr", True)])
    merged = {r.url.rsplit("-", 1)[-1]: r for r in store.load_merged()}
    assert merged["a"].email == "a@main.fr"
    assert merged["c"].email == "c@batch1.fr"
    assert set(merged) == {"a", "b", "c"}


def test_unreadable_checkpoint_is_ignored(tmp_path: Path):
    store = CheckpointStore(tmp_path)
    store.save_batch(1, [rec("a")])
    store.batch_path(2).write_text("{not json", encoding="utf-8")
    assert [r.name for r in store.load_merged()] == ["Ecole a"]


def test_atomic_write_leaves_no_temp_file(tmp_path: Path):
    target = tmp_path / "out" / "data.json"
    write_json_atomic(target, '[1, 2]')
    assert json.loads(target.read_text(encoding="utf-8")) == [1, 2]
    assert [p.name for p in target.parent.iterdir()] == ["data.json"]


def test_output_is_a_json_array_of_records(tmp_path: Path):
    store = CheckpointStore(tmp_path)
    store.save_output([rec("a", "a@x.fr", True)])
    data = json.loads(store.output_path.read_text(encoding="utf-8"))
    assert isinstance(data, list)
    assert data[0]["email"] == "a@x.fr"
    assert data[0]["email_found"] is True
    assert data[0]["error"] is None


def test_emergency_backup_and_review_files(tmp_path: Path):
    store = CheckpointStore(tmp_path)
    flagged = rec("a").model_copy(update={"needs_review": True})
    path = store.emergency_backup([flagged, rec("b")])
    assert path.name.startswith("schools_data_emergency_backup_")
    assert len(json.loads(path.read_text(encoding="utf-8"))) == 2
    review = store.save_review([flagged, rec("b")])
    assert [r["name"] for r in json.loads(review.read_text(encoding="utf-8"))] == ["Ecole a"]


def test_save_review_skips_when_nothing_flagged(tmp_path: Path):
    assert CheckpointStore(tmp_path).save_review([rec("a")]) is None


def test_links_round_trip(tmp_path: Path):
    links = [EntityLink(name="Ecole A", url="https://diplomeo.com/etablissement-a", city="Paris")]
    path = save_links(tmp_path / "links.json", links)
    assert load_links(path) == links


@pytest.mark.parametrize("content", [None, "", "{broken", "[]", '[{"name": "", "url": "x"}]'])
def test_load_links_rejects_unusable_files(tmp_path: Path, content):
    path = tmp_path / "links.json"
    if content is not None:
        path.write_text(content, encoding="utf-8")
    with pytest.raises(SourceFileError):
        load_links(path)
