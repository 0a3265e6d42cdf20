from status_gate import check_project, check_skill


def test_skill_mastered_needs_completed_linked_project():
    result = check_skill("mastered", [1, 2], {3})
    assert not result.valid
    assert result.field == "status"

    assert check_skill("mastered", [1, 2], {2, 3}).valid


def test_skill_without_links_cannot_be_mastered():
    assert not check_skill("mastered", [], {1, 2}).valid


def test_non_terminal_skill_status_always_passes():
    assert check_skill("learning", [], set()).valid
    assert check_skill("want_to_learn", [], set()).valid


def test_project_completed_needs_a_url():
    result = check_project("completed", None, "   ")
    assert not result.valid
    assert result.field == "githubUrl"

    assert check_project("completed", "https://github.com/ana/app", None).valid
    assert check_project("completed", "", "https://demo.example.com").valid


def test_non_terminal_project_status_always_passes():
    assert check_project("active", None, None).valid


def test_details_use_field_and_reason():
    result = check_project("completed", None, None)
    assert result.as_details() == [{"field": "githubUrl", "message": result.reason}]
