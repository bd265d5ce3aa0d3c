"""Recipe generation through DeepSeek's OpenAI-compatible chat API."""

import json
import re
from typing import Any, Sequence, Union

import structlog
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncOpenAI
from pydantic import ValidationError

from dinner_surprise.core.config import settings
from dinner_surprise.core.errors import (
    AIProviderError,
    AIProviderTimeoutError,
    AIProviderUnavailableError,
)
from dinner_surprise.schemas.recipe import IngredientInput, RecipeContent

logger = structlog.get_logger(__name__)

Ingredient = Union[IngredientInput, str]

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*({[\s\S]*?})\s*```")
_OBJECT_RE = re.compile(r"({[\s\S]*})")
_NUMBER_RE = re.compile(r"(\d+)")


def ingredient_name(ingredient: Ingredient) -> str:
    return ingredient.name if isinstance(ingredient, IngredientInput) else str(ingredient)


def describe_ingredient(ingredient: Ingredient) -> str:
    if isinstance(ingredient, IngredientInput):
        if ingredient.quantity is not None and ingredient.unit:
            return f"{ingredient.name} ({ingredient.quantity} {ingredient.unit})"
        return ingredient.name
    return str(ingredient)


def build_prompt(ingredients: Sequence[Ingredient], servings: int) -> str:
    listed = ", ".join(describe_ingredient(ingredient) for ingredient in ingredients)
    return f"""Create a recipe using these ingredients: {listed}.

Servings: {servings}

Prefer a common, well-known dish that uses most (not necessarily all) of these
ingredients, and only invent a new one if nothing recognizable fits. Common
pantry ingredients may be added. Never use more of an ingredient than the
quantity given.

Respond with a JSON object with these properties:
- title: recipe name
- ingredients: list of ingredients with metric measurements (g, ml)
- steps: step-by-step instructions
- servings: {servings}
- cookingTime: estimated cooking time
- difficulty: Easy, Medium, or Hard
- calories: approximate calories per serving (number)
- protein: approximate protein per serving in grams (number)

Return only the JSON object."""


def template_recipe(ingredients: Sequence[Ingredient], servings: int) -> RecipeContent:
    """Simple recipe built from the ingredient names alone."""
    names = [ingredient_name(ingredient) for ingredient in ingredients]
    title = f"{names[0]} and {names[1]} Recipe" if len(names) > 1 else f"{names[0]} Recipe"
    return RecipeContent(
        title=title,
        ingredients=[f"100g {name}" for name in names],
        steps=[
            "1. Prepare and measure all ingredients.",
            f"2. Combine {', '.join(names)} in a suitable dish.",
            "3. Cook according to your preference.",
            "4. Serve and enjoy!",
        ],
        servings=servings,
        cooking_time="30 minutes",
        difficulty="Medium",
        calories=300,
        protein=15,
    )


def extract_json(text: str) -> str:
    """Pull a JSON object out of a completion that may wrap it in markdown."""
    match = _CODE_BLOCK_RE.search(text)
    if match:
        return match.group(1).strip()
    match = _OBJECT_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _as_int(value: Any) -> Any:
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        return int(match.group(1)) if match else 0
    return value


def parse_recipe(text: str, servings: int) -> RecipeContent:
    """
    Parse a completion into a recipe.

    Raises:
        ValueError: The completion is not a usable recipe
    """
    data = json.loads(extract_json(text))
    if not isinstance(data, dict) or not all(data.get(key) for key in ("title", "ingredients", "steps")):
        raise ValueError("Invalid recipe data structure")

    for key in ("calories", "protein", "servings"):
        if key in data:
            data[key] = _as_int(data[key])
    data.setdefault("servings", servings)
    data["steps"] = [str(step) for step in data["steps"]]
    return RecipeContent.model_validate(data)


class DeepSeekRecipeGenerator:
    """Generates recipes with DeepSeek. One instance (and HTTP client) per process."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.DEEPSEEK_API_KEY
        self.model = model or settings.DEEPSEEK_MODEL
        self.client: AsyncOpenAI | None = None
        if self.api_key:
            self.client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=base_url or settings.DEEPSEEK_BASE_URL,
                timeout=timeout or settings.AI_TIMEOUT_SECONDS,
                max_retries=0,
            )

    async def generate(self, ingredients: Sequence[Ingredient], servings: int) -> RecipeContent:
        """
        Generate a recipe from the given ingredients.

        Without an API key a template recipe is returned so the app can be
        exercised locally.

        Raises:
            AIProviderUnavailableError: The DeepSeek account is out of balance
            AIProviderTimeoutError: DeepSeek timed out or is unreachable
            AIProviderError: Any other provider failure
        """
        if self.client is None:
            logger.warning("recipe_generator.mock_recipe", reason="DEEPSEEK_API_KEY not set")
            return template_recipe(ingredients, servings)

        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": build_prompt(ingredients, servings)}],
                temperature=settings.AI_TEMPERATURE,
                max_tokens=settings.AI_MAX_TOKENS,
                response_format={"type": "json_object"},
            )
        except (APITimeoutError, APIConnectionError) as e:
            logger.warning("recipe_generator.unreachable", error=str(e))
            raise AIProviderTimeoutError(
                "The AI service is temporarily unavailable, please try again later"
            ) from e
        except APIStatusError as e:
            if e.status_code == 402 or "Insufficient Balance" in str(e):
                logger.error("recipe_generator.insufficient_balance", status_code=e.status_code)
                raise AIProviderUnavailableError(
                    "The AI service is currently unavailable due to insufficient account "
                    "balance. The site administrator needs to add credits to continue "
                    "generating recipes."
                ) from e
            logger.error("recipe_generator.api_error", status_code=e.status_code, error=str(e))
            raise AIProviderError(f"AI provider error: {e.message}") from e
        except APIError as e:
            logger.error("recipe_generator.api_error", error=str(e))
            raise AIProviderError(f"AI provider error: {e}") from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise AIProviderError("Empty response from AI service")

        try:
            return parse_recipe(content, servings)
        except (ValueError, ValidationError) as e:
            logger.warning("recipe_generator.unparseable_completion", error=str(e))
            return template_recipe(ingredients, servings)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
