import json

import pytest

from norm import export
from norm.errors import ValidationError
from norm.tests.models import FK_PROPERTY_ANIMAL


def test_to_dict(animals):
    cat = animals.animal.get(1)
    cat.get_owned_instances(FK_PROPERTY_ANIMAL)

    exported = export.to_dict(cat)

    assert exported["type"] == "Animal"
    assert exported["id"] == 1
    assert exported["fields"]["name"] == "cat"
    assert exported["fields"]["tame"] is True
    assert exported["fields"]["born_on"] is None
    assert [child["id"] for child in exported["children"][FK_PROPERTY_ANIMAL]] == [
        {"animal_id": 1, "property_type_id": 1},
        {"animal_id": 1, "property_type_id": 2},
    ]


def test_json_round_trip(animals):
    cat = animals.animal.get(1)
    cat.get_owned_instances(FK_PROPERTY_ANIMAL)
    text = export.dumps(cat)
    assert json.loads(text)["fields"]["sound"] == "meow"

    animals.registry.clear_caches()
    imported = export.loads(animals.animal, text)

    assert not imported.is_persisted
    assert imported.get_dirty_fields()["name"] == "cat"
    assert imported.tame is True
    assert [prop.comment for prop in imported.get_owned_instances(FK_PROPERTY_ANIMAL)] == ["black", "small"]
    assert all(prop.animal_id == 1 for prop in imported.get_owned_instances(FK_PROPERTY_ANIMAL))


def test_import_rejects_other_types(animals):
    with pytest.raises(ValidationError):
        export.from_dict(animals.property_type, {"type": "Animal", "fields": {"name": "cat"}})
