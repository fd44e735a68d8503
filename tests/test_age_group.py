from echoes.modules.profiles.age_group import AgeGroup, is_compatible


def test_parse_valid_age_group() -> None:
    group = AgeGroup.parse("13-18")
    assert (group.minimum_age, group.maximum_age) == (13, 18)
    assert group.value == "13-18"


def test_parse_falls_back_to_default_group() -> None:
    assert AgeGroup.parse("teens").value == "6-9"
    assert AgeGroup.parse(None).value == "6-9"
    assert AgeGroup.parse("9-6").value == "6-9"


def test_compatibility_uses_minimum_age() -> None:
    assert is_compatible("6-9", "6-9")
    assert is_compatible("10-12", "6-9")
    assert not is_compatible("3-5", "6-9")
    assert not is_compatible("6-9", "10-12")
