"""Recipe endpoints: generation, saving, listing and deletion."""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.api.deps import CurrentUserId, ensure_same_user, get_recipe_generator
from dinner_surprise.core.database import get_db
from dinner_surprise.core.rate_limit import generate_limit
from dinner_surprise.schemas.recipe import (
    GenerateRecipeRequest,
    RecipeContent,
    RecipeResponse,
    SaveRecipeRequest,
    SaveRecipeResponse,
)
from dinner_surprise.services.recipe_generator import DeepSeekRecipeGenerator
from dinner_surprise.services.recipe_service import RecipeService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recipes"])


@router.post("/generate-recipe", response_model=RecipeContent)
@generate_limit
async def generate_recipe(
    request: Request,
    response: Response,
    body: GenerateRecipeRequest,
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    generator: Annotated[DeepSeekRecipeGenerator, Depends(get_recipe_generator)],
) -> RecipeContent:
    """Generate a recipe from the given ingredients.

    Spends one monthly generation. The generation is given back when the AI
    provider fails.

    Raises:
        HTTPException: 400 without ingredients, 403 if the body names another user
    """
    ensure_same_user(body.userId, current_user_id)

    service = RecipeService(db, generator)
    try:
        return await service.generate(current_user_id, body.ingredients, body.servings)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/recipes/save", response_model=SaveRecipeResponse)
async def save_recipe(
    body: SaveRecipeRequest,
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SaveRecipeResponse:
    """Save a generated recipe to the caller's collection."""
    ensure_same_user(body.userId, current_user_id)

    service = RecipeService(db)
    recipe = await service.save(current_user_id, body.recipe)
    logger.info(f"User {current_user_id} saved recipe {recipe.id}")
    return SaveRecipeResponse(recipe=RecipeResponse.model_validate(recipe))


@router.get("/recipes", response_model=list[RecipeResponse])
async def list_recipes(
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[RecipeResponse]:
    service = RecipeService(db)
    recipes = await service.list_recipes(current_user_id)
    return [RecipeResponse.model_validate(recipe) for recipe in recipes]


@router.delete("/recipes/{recipe_id}")
async def delete_recipe(
    recipe_id: uuid.UUID,
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, bool]:
    """Delete one of the caller's recipes and free its saved-recipe slot.

    Raises:
        RecipeNotFoundError: The recipe does not exist or belongs to someone else
    """
    service = RecipeService(db)
    await service.delete(current_user_id, recipe_id)
    return {"success": True}
