import json

import pytest

from attendance.models import FaceCandidate
from faces.descriptor import face_distance, serialize_descriptor
from faces.face_matcher import FaceMatcher, MatchResult

from conftest import descriptor, euclidean


def candidate(person_id, offset, index=0):
    return FaceCandidate(id=person_id, face_descriptor_json=serialize_descriptor(descriptor(offset, index)))


def make_matcher(tolerance=0.6):
    return FaceMatcher(tolerance=tolerance, distance_fn=euclidean)


def test_default_distance_is_face_recognition():
    assert FaceMatcher().distance_fn is face_distance


def test_default_threshold_is_point_six():
    assert FaceMatcher(distance_fn=euclidean).tolerance == 0.6


def test_identical_descriptor_has_full_confidence():
    matcher = FaceMatcher(distance_fn=euclidean)
    matcher.load_candidates([candidate("alice", 0.3)])

    result = matcher.match(descriptor(0.3))

    assert result.person_id == "alice"
    assert result.distance == 0.0
    assert result.confidence == 1.0


def test_close_match_under_default_threshold():
    matcher = FaceMatcher(distance_fn=euclidean)
    result = matcher.match(descriptor(0.45), [candidate("asha", 0.0)])

    assert result.person_id == "asha"
    assert result.distance == pytest.approx(0.45)
    assert result.confidence == pytest.approx(0.55)


def test_closest_candidate_under_threshold_wins():
    result = make_matcher().match(descriptor(0.0), [candidate("far", 0.5), candidate("near", 0.25)])

    assert result.person_id == "near"
    assert result.distance == pytest.approx(0.25)
    assert result.confidence == pytest.approx(0.75)


def test_no_candidate_under_threshold_is_unknown():
    assert make_matcher().match(descriptor(0.0), [candidate("a", 0.7), candidate("b", 0.9)]) is None


def test_distance_equal_to_threshold_is_rejected():
    assert make_matcher(0.5).match(descriptor(0.0), [candidate("edge", 0.5)]) is None


def test_equal_distances_keep_first_candidate():
    result = make_matcher().match(descriptor(0.0), [candidate("first", 0.25, 0), candidate("second", 0.25, 1)])
    assert result.person_id == "first"


def test_empty_candidate_set_is_unknown():
    assert make_matcher().match(descriptor(0.0), []) is None


def test_malformed_candidate_is_skipped():
    candidates = [
        FaceCandidate(id="broken", face_descriptor_json="[1, 2, 3]"),
        FaceCandidate(id="missing", face_descriptor_json=None),
        candidate("good", 0.3),
    ]
    result = make_matcher().match(descriptor(0.0), candidates)
    assert result.person_id == "good"


def test_loaded_gallery_is_used_when_no_candidates_given():
    matcher = make_matcher()
    usable = matcher.load_candidates([
        candidate("alice", 0.1),
        FaceCandidate(id="bad", face_descriptor_json=json.dumps([0.0] * 10)),
    ])

    assert usable == 1
    assert matcher.gallery_size == 1
    assert matcher.get_recognition_statistics()['rejected_descriptors'] == 1
    assert matcher.match(descriptor(0.0)).person_id == "alice"


def test_confidence_is_clamped_at_zero():
    assert MatchResult(person_id="x", distance=1.3).confidence == 0.0
