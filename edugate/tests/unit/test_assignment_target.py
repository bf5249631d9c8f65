from __future__ import annotations

from edugate.services.assignments import AssignmentOptions, AssignmentTarget, extract_target


def test_path_params_win_over_body_and_query() -> None:
    target = extract_target(
        path_params={"class_id": "C1"},
        body={"class_id": "C2", "subject_id": "S2"},
        query={"class_id": "C3", "subject_id": "S3"},
        options=AssignmentOptions(),
    )
    assert target == AssignmentTarget(class_id="C1", subject_id="S2")


def test_camel_case_aliases_are_accepted() -> None:
    target = extract_target(
        path_params={},
        body={"classId": 12},
        query={"subjectId": "S9"},
        options=AssignmentOptions(),
    )
    assert target == AssignmentTarget(class_id="12", subject_id="S9")


def test_custom_parameter_names_and_blank_values() -> None:
    options = AssignmentOptions(class_id_param="section_id", subject_id_param="course_id")
    target = extract_target(
        path_params={"section_id": "  "},
        body="not-a-mapping",
        query={"sectionId": "A", "course_id": ""},
        options=options,
    )
    assert target == AssignmentTarget(class_id="A", subject_id=None)


def test_missing_ids_yield_empty_target() -> None:
    target = extract_target(path_params=None, body=None, query=None, options=AssignmentOptions())
    assert target.class_id is None and target.subject_id is None
