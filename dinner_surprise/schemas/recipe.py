"""Recipe request/response schemas."""

from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class IngredientInput(BaseModel):
    """Ingredient the user has on hand."""

    name: str = Field(..., min_length=1)
    quantity: Optional[Union[float, str]] = None
    unit: Optional[str] = None


class GenerateRecipeRequest(BaseModel):
    """Request to generate a recipe. Ingredients may be plain names or objects."""

    ingredients: list[Union[IngredientInput, str]] = Field(default_factory=list)
    servings: int = Field(2, ge=1, le=20)
    userId: Optional[UUID] = None


class RecipeContent(BaseModel):
    """Recipe as produced by the AI provider and sent back by the client to save."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=255)
    ingredients: list[Any] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    servings: int = 2
    cooking_time: str = Field("30 minutes", alias="cookingTime")
    difficulty: str = "Medium"
    calories: int = 0
    protein: int = 0


class SaveRecipeRequest(BaseModel):
    recipe: RecipeContent
    userId: Optional[UUID] = None


class IngredientResponse(BaseModel):
    name: str
    amount: str = ""
    unit: str = ""


class RecipeResponse(BaseModel):
    """Saved recipe."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    user_id: UUID
    title: str
    ingredients: list[IngredientResponse]
    steps: list[str]
    servings: int
    cooking_time: str = Field(..., serialization_alias="cookingTime")
    difficulty: str
    calories: int
    protein: int
    created_at: datetime


class SaveRecipeResponse(BaseModel):
    success: bool = True
    recipe: RecipeResponse
