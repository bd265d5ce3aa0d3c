"""CRUD operations for Recipe."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.models.recipe import Recipe


async def create_recipe(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    title: str,
    ingredients: list[dict],
    steps: list[str],
    servings: int,
    cooking_time: str,
    difficulty: str,
    calories: int,
    protein: int,
) -> Recipe:
    """
    Create a new recipe for a user.

    Args:
        db: Database session
        user_id: Owner of the recipe
        title: Recipe title
        ingredients: Normalized ``{name, amount, unit}`` dicts
        steps: Instructions

    Returns:
        Created Recipe object
    """
    recipe = Recipe(
        user_id=user_id,
        title=title,
        ingredients=ingredients,
        steps=steps,
        servings=servings,
        cooking_time=cooking_time,
        difficulty=difficulty,
        calories=calories,
        protein=protein,
    )
    db.add(recipe)
    await db.commit()
    await db.refresh(recipe)
    return recipe


async def get_user_recipe(
    db: AsyncSession, recipe_id: uuid.UUID, user_id: uuid.UUID
) -> Recipe | None:
    """Get a recipe only if it belongs to the user."""
    result = await db.execute(
        select(Recipe).where(Recipe.id == recipe_id, Recipe.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def list_user_recipes(db: AsyncSession, user_id: uuid.UUID) -> list[Recipe]:
    result = await db.execute(
        select(Recipe).where(Recipe.user_id == user_id).order_by(Recipe.created_at.desc())
    )
    return list(result.scalars().all())


async def delete_recipe(db: AsyncSession, recipe: Recipe) -> None:
    await db.delete(recipe)
    await db.commit()
