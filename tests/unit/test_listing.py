from selectolax.parser import HTMLParser

from src.pipeline.listing import (
    canonical_url,
    extract_entities,
    first_success,
    from_detail_anchors,
    from_results_list,
    guess_labels,
)
from src.schemas import UNSPECIFIED


BASE = "https://diplomeo.com/etablissements/resultats"

RESULTS_HTML = '''<html><body>
<ul data-cy="hub-schools-results">
  <li><div class="tw-group">
    <a href="/etablissement-ecole-a-101">Ecole A</a>
    <span class="tw-text-body-xs tw-font-sans tw-text-gray-800">Commerce</span>
    <span class="tw-text-body-xs tw-font-semibold">Paris</span>
  </div></li>
  <li><div class="tw-group">
    <a href="https://Diplomeo.com/etablissement-ecole-b-202/?ref=list#top">  Ecole   B </a>
    <span class="tw-text-body-xs tw-font-sans tw-text-gray-800">Santé</span>
  </div></li>
  <li><div class="tw-group">
    <a href="/etablissement-ecole-a-101">Ecole A (again)</a>
  </div></li>
  <li><span>Advertisement</span></li>
</ul>
</body></html>'''

ANCHORS_ONLY_HTML = '''<html><body>
<section>
  <div class="card">
    <div class="inner"><a href="https://diplomeo.com/etablissement-x-1">Ecole X</a></div>
    <p class="tw-text-xs">Design</p>
    <p class="tw-text-xs tw-font-bold">Lyon</p>
  </div>
  <a href="/etablissement-y-2">Ecole Y</a>
  <a href="/formation-z">Not a school</a>
</section>
</body></html>'''


def test_canonical_url_lowercases_host_and_drops_query():
    assert canonical_url("/etablissement-a-1/?x=1#y", BASE) == "https://diplomeo.com/etablissement-a-1"
    assert canonical_url("https://DIPLOMEO.com/Etablissement-A", BASE) == "https://diplomeo.com/Etablissement-A"
    assert canonical_url("javascript:void(0)", BASE) is None


def test_results_list_extracts_and_dedupes():
    links = extract_entities(RESULTS_HTML, BASE)
    assert [l.url for l in links] == [
        "https://diplomeo.com/etablissement-ecole-a-101",
        "https://diplomeo.com/etablissement-ecole-b-202",
    ]
    a, b = links
    assert (a.name, a.sector, a.city) == ("Ecole A", "Commerce", "Paris")
    assert b.name == "Ecole B"
    assert b.sector == "Santé"
    assert b.city == UNSPECIFIED


def test_results_list_returns_empty_without_container():
    assert from_results_list(HTMLParser(ANCHORS_ONLY_HTML), BASE) == []


def test_anchor_scan_recovers_labels_from_ancestors():
    links = from_detail_anchors(HTMLParser(ANCHORS_ONLY_HTML), BASE)
    by_name = {l.name: l for l in links}
    assert set(by_name) == {"Ecole X", "Ecole Y"}
    assert by_name["Ecole X"].sector == "Design"
    assert by_name["Ecole X"].city == "Lyon"
    assert by_name["Ecole Y"].sector == UNSPECIFIED
    assert by_name["Ecole Y"].url == "https://diplomeo.com/etablissement-y-2"


def test_extract_entities_falls_back_to_anchor_scan():
    links = extract_entities(ANCHORS_ONLY_HTML, BASE)
    assert len(links) == 2


def test_first_success_skips_failing_and_empty_strategies():
    calls = []

    def boom(parser, base):
        calls.append("boom")
        raise RuntimeError("layout changed")

    def empty(parser, base):
        calls.append("empty")
        return []

    def none(parser, base):
        calls.append("none")
        return None

    result = first_success([boom, empty, none, from_detail_anchors], HTMLParser(ANCHORS_ONLY_HTML), BASE)
    assert calls == ["boom", "empty", "none"]
    assert len(result) == 2


def test_extract_entities_empty_html():
    assert extract_entities("", BASE) == []


CLASSLESS_HTML = '''<html><body>
<div><div>
  <a href="/etablissement-ecole-z-9">Ecole Z</a>
  <p>Ecole de commerce</p>
  <p>75001 Paris</p>
</div></div>
<div><div>
  <a href="/etablissement-ecole-w-7">Ecole W</a>
  <span>Informatique</span>
  <span>Bordeaux</span>
</div></div>
</body></html>'''


def test_anchor_scan_guesses_labels_from_text_shape_without_classes():
    links = extract_entities(CLASSLESS_HTML, BASE)
    got = [(l.name, l.sector, l.city) for l in links]
    assert got == [
        ("Ecole Z", "Ecole de commerce", "75001 Paris"),
        ("Ecole W", "Informatique", "Bordeaux"),
    ]


def test_guess_labels_rules():
    assert guess_labels(["Santé", "13001 Marseille"]) == ("Santé", "13001 Marseille")
    assert guess_labels(["2 formations", "Nantes"]) == ("Nantes", None)
    assert guess_labels(["x" * 60]) == (None, None)
    assert guess_labels([]) == (None, None)


def test_custom_detail_pattern_reaches_default_strategies():
    html = '''<ul data-cy="hub-schools-results">
      <li><a href="/ecole/alpha-1">Alpha</a></li>
      <li><a href="/etablissement-beta-2">Beta</a></li>
    </ul>'''
    assert [l.name for l in extract_entities(html, BASE, detail_pattern="/ecole/")] == ["Alpha"]
    assert [l.name for l in extract_entities(html, BASE)] == ["Beta"]
