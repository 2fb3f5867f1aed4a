import typing
from datetime import datetime

import attr

from norm import Entity, Identity, Registry


FK_INVENTORY_ANIMAL = "FK_Animal_Inventory_Animal_Id"
FK_PROPERTY_ANIMAL = "FK_Animal_Property_Animal_Id"
FK_PROPERTY_TYPE = "FK_Animal_Property_Property_Type_Id"
FK_NOTE_PROPERTY = "FK_Property_Note_Animal_Property"


@attr.s(auto_attribs=True)
class AnimalModels:
    registry: Registry
    animal: typing.Type[Entity]
    inventory: typing.Type[Entity]
    property: typing.Type[Entity]
    property_type: typing.Type[Entity]
    property_note: typing.Type[Entity]
    duplicated_row: typing.Type[Entity]


def define_animal_models(model_registry: Registry) -> AnimalModels:
    class Base(Entity):
        __abstract__ = True
        registry = model_registry
        database = "norm"

    class Animal(Base):
        id: Identity[int]
        name: str
        legs: int
        sound: typing.Optional[str]
        description: typing.Optional[str]
        tame: bool
        born_on: typing.Optional[datetime]

        def _set_default_values(self) -> None:
            self.description = "new animal ready to go"

        def increment_legs(self) -> None:
            self.legs = (self.legs or 0) + 1

    class AnimalInventory(Base):
        animal_id: Identity[int]
        qoh: int
        last_into_stock: typing.Optional[datetime]

        def add_qoh(self, qoh: int) -> None:
            self.qoh = (self.qoh or 0) + qoh

    class AnimalPropertyType(Base):
        id: Identity[int]
        name: str

    class AnimalProperty(Base):
        animal_id: Identity[int]
        property_type_id: Identity[int]
        set_on_date: typing.Optional[datetime]
        comment: typing.Optional[str]

    class PropertyNote(Base):
        id: Identity[int]
        animal_id: int
        property_type_id: int
        note: str

    class DuplicatedRow(Base):
        id: Identity[int]
        label: str

    AnimalInventory.declare_foreign_key(FK_INVENTORY_ANIMAL, "animal_id", Animal, owned=True)
    AnimalProperty.declare_foreign_key(FK_PROPERTY_ANIMAL, "animal_id", "Animal", owned=True)
    AnimalProperty.declare_foreign_key(FK_PROPERTY_TYPE, "property_type_id", AnimalPropertyType)
    PropertyNote.declare_foreign_key(FK_NOTE_PROPERTY, ["animal_id", "property_type_id"], AnimalProperty, owned=True)

    return AnimalModels(
        registry=model_registry,
        animal=Animal,
        inventory=AnimalInventory,
        property=AnimalProperty,
        property_type=AnimalPropertyType,
        property_note=PropertyNote,
        duplicated_row=DuplicatedRow,
    )
