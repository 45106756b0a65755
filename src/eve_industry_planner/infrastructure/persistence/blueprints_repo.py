from __future__ import annotations

from typing import List, Optional

from eve_industry_planner.db_models import CharacterAssetsModel


def get_character_blueprints(session, character_id: int, blueprint_type_id: Optional[int] = None) -> List[CharacterAssetsModel]:
    q = session.query(CharacterAssetsModel).filter(
        CharacterAssetsModel.character_id == int(character_id),
        CharacterAssetsModel.type_category_name == "Blueprint",
    )
    if blueprint_type_id is not None:
        q = q.filter(CharacterAssetsModel.type_id == int(blueprint_type_id))
    return q.all()


def get_best_material_efficiency(session, character_id: int, blueprint_type_id: int) -> Optional[int]:
    """Highest ME among the character's copies/originals of a blueprint, or None when not owned."""

    values = [
        int(bp.blueprint_material_efficiency)
        for bp in get_character_blueprints(session, character_id, blueprint_type_id)
        if bp.blueprint_material_efficiency is not None
    ]
    return max(values) if values else None


class OwnedBlueprintLookup:
    """Owned-recipe lookup over the character asset table."""

    def __init__(self, session):
        self._session = session

    def default_efficiency_for(self, character_id: int, recipe_id: int) -> Optional[int]:
        return get_best_material_efficiency(self._session, character_id, recipe_id)
