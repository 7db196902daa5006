import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SCRIPTS = ROOT / "scripts"
if str(SCRIPTS) not in sys.path:
    sys.path.insert(0, str(SCRIPTS))

from dict_lines import classify_lines, grammar_for_year, tokenize_lines  # type: ignore
from dict_parse import (  # type: ignore
    FormatError,
    assemble_variables,
    parse_dictionary,
    parse_dictionary_report,
)


DICT_2016 = """HOUSING RECORD

RT          1
    Record Type
           H .Housing Record or Group Quarters Unit
           P .Person Record

SEX         1
    Sex
           1 .Male
           2 .Female

AGEP        2
    Age
          00 .Under 1 year
      01..99 .1 to 99 years (Top-coded***)

PINCP       7
    Total person's income (signed)
     bbbbbbb .N/A (less than 15 years old)
     0000000 .None
 -0019998..-0000001 .Loss
Note: Use ADJINC to adjust PINCP to constant dollars.
See the technical documentation for details.

PERSON RECORD

RT          1
    Record Type
           P .Person Record
"""

DICT_2018 = """HOUSING RECORD

RT Character 1
Record Type
H .Housing Record or Group Quarters Unit
P .Person Record

SEX Character 1
Sex
1 .Male
2 .Female
"""


def _assemble(text: str, year: int):
    return assemble_variables(classify_lines(tokenize_lines(text), grammar_for_year(year)))


def test_assemble_pre_2017_variables():
    asm = _assemble(DICT_2016, 2016)
    assert set(asm.variables) == {"housing", "rt", "sex", "agep", "pincp", "person"}
    sex = asm.variables["sex"]
    assert sex.label == "Sex"
    assert [(v.code, v.description) for v in sex.value_labels] == [("1", "Male"), ("2", "Female")]
    assert sex.has_value_labels


def test_ranges_and_missing_codes_are_dropped():
    asm = _assemble(DICT_2016, 2016)
    assert [v.code for v in asm.variables["agep"].value_labels] == ["00"]
    assert [v.code for v in asm.variables["pincp"].value_labels] == ["0000000"]
    assert asm.dropped_ranges == 2
    assert asm.dropped_missing == 1


def test_note_continuation_is_appended():
    asm = _assemble(DICT_2016, 2016)
    assert asm.variables["pincp"].note == (
        "Use ADJINC to adjust PINCP to constant dollars. See the technical documentation for details."
    )


def test_repeated_header_reopens_variable():
    asm = _assemble(DICT_2016, 2016)
    rt = asm.variables["rt"]
    assert rt.label == "Record Type"
    assert [v.code for v in rt.value_labels] == ["H", "P", "P"]


def test_parse_dictionary_pre_2017_output():
    out = parse_dictionary(DICT_2016, 2016, 1)
    assert out == [
        'label variable agep "Age"',
        'label define agep_lbl 00 "Under 1 year", add',
        "label values agep agep_lbl",
        "",
        'label variable pincp "Total person\'s income (signed)"',
        'label define pincp_lbl 0000000 "None", add',
        "label values pincp pincp_lbl",
        "notes pincp: Use ADJINC to adjust PINCP to constant dollars. See the technical documentation for details.",
        "",
        'label variable rt "Record Type"',
        'capture label define rt_lbl H "Housing Record or Group Quarters Unit", add',
        'capture label define rt_lbl P "Person Record", add',
        "capture label values rt rt_lbl",
        "",
        'label variable sex "Sex"',
        'label define sex_lbl 1 "Male", add',
        'label define sex_lbl 2 "Female", add',
        "label values sex sex_lbl",
        "",
    ]


def test_parse_dictionary_2017_layout():
    out = parse_dictionary(DICT_2018, 2018, 5)
    assert 'label variable rt "Record Type"' in out
    assert out[out.index('label variable sex "Sex"') :] == [
        'label variable sex "Sex"',
        'label define sex_lbl 1 "Male", add',
        'label define sex_lbl 2 "Female", add',
        "label values sex sex_lbl",
        "",
    ]


def test_header_followed_by_label_gives_one_label_statement():
    out = parse_dictionary("\nSCHL        2\n    Educational attainment   \n", 2015, 1)
    labels = [s for s in out if s.startswith("label variable")]
    assert labels == ['label variable schl "Educational attainment"']


def test_wrong_layout_year_raises_format_error():
    with pytest.raises(FormatError):
        parse_dictionary(DICT_2016, 2018, 1)


def test_text_without_headers_raises_format_error():
    with pytest.raises(FormatError):
        parse_dictionary("this is not a data dictionary\nat all, really\n", 2016, 1)
    with pytest.raises(FormatError):
        parse_dictionary("", 2019, 1)


def test_identical_value_lines_emit_one_define():
    text = "\nSEX Character 1\nSex\n1 .Male\n1 .Male\n2 .Female\n"
    out = parse_dictionary(text, 2019, 1)
    assert out.count('label define sex_lbl 1 "Male", add') == 1


def test_empty_label_suppresses_variable_label():
    text = "\nSEX Character 1\n\n1 .Male\n2 .Female\n"
    out = parse_dictionary(text, 2019, 1)
    assert not any(s.startswith("label variable") for s in out)
    assert "label values sex sex_lbl" in out


def test_variable_without_value_labels_has_no_apply():
    text = "\nWGTP Numeric 5\nHousing Weight\n0..9999 .Integer weight of housing unit\n"
    out = parse_dictionary(text, 2019, 1)
    assert out == ['label variable wgtp "Housing Weight"', ""]


def test_lines_before_any_header_are_counted_as_unassociated():
    text = "1 .Orphan value\nNote: nobody owns this\n\nSEX 1\nSex\n1 .Male\n"
    report = parse_dictionary_report(text, 2016, 1)
    assert report.unassociated == 2
    assert report.warnings()
    assert 'label define sex_lbl 1 "Male", add' in report.statements


def test_report_carries_provenance():
    report = parse_dictionary_report(DICT_2018, 2018, 5)
    assert report.year == 2018
    assert report.sample_period == 5
    assert report.grammar == "2017+"
    assert report.headers == 2
    assert report.variables == 2


def test_parsing_is_idempotent():
    assert parse_dictionary(DICT_2016, 2016, 1) == parse_dictionary(DICT_2016, 2016, 1)


def test_value_line_with_empty_description_is_dropped():
    text = "\nSEX Character 1\nSex\n1 .Male\n5 .\n2 .Female\n"
    out = parse_dictionary(text, 2019, 1)
    assert not any("sex_lbl 5" in s for s in out)
    assert out == [
        'label variable sex "Sex"',
        'label define sex_lbl 1 "Male", add',
        'label define sex_lbl 2 "Female", add',
        "label values sex sex_lbl",
        "",
    ]
