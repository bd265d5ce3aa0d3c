"""Recipe operations that spend plan quota."""

import json
import re
import uuid
from typing import Any, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.core.errors import QuotaExceededError, RecipeNotFoundError
from dinner_surprise.crud import recipe as recipe_crud
from dinner_surprise.models.recipe import Recipe
from dinner_surprise.schemas.recipe import RecipeContent
from dinner_surprise.services.recipe_generator import DeepSeekRecipeGenerator, Ingredient
from dinner_surprise.services.usage_ledger import UsageLedger

logger = structlog.get_logger(__name__)

_AMOUNT_RE = re.compile(r"^\s*(?P<amount>\d[\d/.,]*)\s*(?P<rest>.*)$")

GENERATION_LIMIT_MESSAGE = (
    "Monthly recipe generation limit reached. "
    "Please upgrade to premium for unlimited recipes."
)
SAVE_LIMIT_MESSAGE = (
    "You have reached your saved recipes limit. "
    "Please upgrade to premium for more storage."
)


def parse_ingredient(text: str) -> dict[str, str]:
    """
    Split "200g pasta" or "2 cloves garlic" into name, amount and unit.

    Strings without a leading amount are kept whole as the name.
    """
    text = text.strip()
    match = _AMOUNT_RE.match(text)
    if not match or not match.group("rest"):
        return {"name": text, "amount": "", "unit": ""}

    amount = match.group("amount")
    rest = match.group("rest")
    parts = rest.split(maxsplit=1)
    if len(parts) == 2 and parts[0].isalpha():
        return {"name": parts[1].strip(), "amount": amount, "unit": parts[0]}
    return {"name": rest.strip(), "amount": amount, "unit": ""}


def normalize_ingredient(item: Any) -> dict[str, str]:
    if isinstance(item, str):
        stripped = item.strip()
        if stripped.startswith("{") and stripped.endswith("}"):
            try:
                item = json.loads(stripped)
            except json.JSONDecodeError:
                return parse_ingredient(stripped)
        else:
            return parse_ingredient(stripped)

    if isinstance(item, dict):
        name = str(item.get("name") or "")
        amount = str(item.get("amount") or item.get("quantity") or "")
        unit = str(item.get("unit") or "")
        if name and not amount and not unit:
            return parse_ingredient(name)
        return {"name": name, "amount": amount, "unit": unit}

    return {"name": str(item), "amount": "", "unit": ""}


def normalize_ingredients(items: Sequence[Any]) -> list[dict[str, str]]:
    """Coerce the mix of strings and objects clients send into ``{name, amount, unit}``."""
    return [normalize_ingredient(item) for item in items]


class RecipeService:
    """Generate, save, list and delete recipes for a user."""

    def __init__(self, db: AsyncSession, generator: DeepSeekRecipeGenerator | None = None):
        """Initialize recipe service.

        Args:
            db: Database session
            generator: AI recipe generator (only needed for ``generate``)
        """
        self.db = db
        self.generator = generator
        self.ledger = UsageLedger(db)

    async def generate(
        self, user_id: uuid.UUID, ingredients: Sequence[Ingredient], servings: int
    ) -> RecipeContent:
        """
        Spend one generation and ask the AI provider for a recipe.

        The generation is given back if the provider call fails.

        Raises:
            ValueError: No ingredients
            QuotaExceededError: Monthly generations used up
            AIProviderError: Provider failure (quota already released)
        """
        if not ingredients:
            raise ValueError("Ingredients are required")
        if self.generator is None:
            raise RuntimeError("A recipe generator is required to generate recipes")

        decision = await self.ledger.try_consume_generation(user_id)
        if not decision.allowed:
            raise QuotaExceededError(
                GENERATION_LIMIT_MESSAGE,
                context={"used": decision.used, "limit": decision.limit},
            )

        try:
            recipe = await self.generator.generate(ingredients, servings)
        except Exception:
            await self.ledger.release_generation(user_id)
            raise

        logger.info(
            "recipe.generated",
            user_id=str(user_id),
            plan_type=decision.plan_type.value,
            used=decision.used,
        )
        return recipe

    async def save(self, user_id: uuid.UUID, content: RecipeContent) -> Recipe:
        """
        Spend one saved-recipe slot and store the recipe.

        Raises:
            QuotaExceededError: Saved recipe limit reached
        """
        decision = await self.ledger.try_save_item(user_id)
        if not decision.allowed:
            raise QuotaExceededError(
                SAVE_LIMIT_MESSAGE,
                context={"used": decision.used, "limit": decision.limit},
            )

        try:
            recipe = await recipe_crud.create_recipe(
                self.db,
                user_id,
                title=content.title,
                ingredients=normalize_ingredients(content.ingredients),
                steps=list(content.steps),
                servings=content.servings,
                cooking_time=content.cooking_time,
                difficulty=content.difficulty,
                calories=content.calories,
                protein=content.protein,
            )
        except SQLAlchemyError:
            await self.db.rollback()
            await self.ledger.release_saved_item(user_id)
            raise

        logger.info("recipe.saved", user_id=str(user_id), recipe_id=str(recipe.id))
        return recipe

    async def delete(self, user_id: uuid.UUID, recipe_id: uuid.UUID) -> None:
        """
        Delete one of the user's recipes and free its slot.

        Raises:
            RecipeNotFoundError: No such recipe for this user
        """
        recipe = await recipe_crud.get_user_recipe(self.db, recipe_id, user_id)
        if recipe is None:
            raise RecipeNotFoundError(
                "Recipe not found or you do not have permission to delete it"
            )

        await recipe_crud.delete_recipe(self.db, recipe)
        await self.ledger.release_saved_item(user_id)
        logger.info("recipe.deleted", user_id=str(user_id), recipe_id=str(recipe_id))

    async def list_recipes(self, user_id: uuid.UUID) -> list[Recipe]:
        return await recipe_crud.list_user_recipes(self.db, user_id)
