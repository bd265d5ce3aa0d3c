"""Tests for recipe generation, saving and deletion."""

import uuid

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.core.errors import (
    AIProviderUnavailableError,
    QuotaExceededError,
    RecipeNotFoundError,
)
from dinner_surprise.crud import profile as profile_crud
from dinner_surprise.schemas.recipe import RecipeContent
from dinner_surprise.services import recipe_service as recipe_service_module
from dinner_surprise.services.recipe_service import (
    RecipeService,
    normalize_ingredients,
    parse_ingredient,
)


def sample_recipe(**overrides) -> RecipeContent:
    values = {
        "title": "Tomato Pasta",
        "ingredients": ["200g pasta", "2 cloves garlic", "salt"],
        "steps": ["Boil pasta.", "Make sauce.", "Combine."],
        "servings": 2,
        "cookingTime": "25 minutes",
        "difficulty": "Easy",
        "calories": 450,
        "protein": 12,
    }
    values.update(overrides)
    return RecipeContent.model_validate(values)


async def monthly_usage(db_session: AsyncSession, user_id: uuid.UUID) -> int:
    profile = await profile_crud.get_profile(db_session, user_id, refresh=True)
    return profile.monthly_usage


class TestIngredientNormalization:
    """Test coercion of the ingredient shapes clients send."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("200g pasta", {"name": "pasta", "amount": "200", "unit": "g"}),
            ("2 cloves garlic", {"name": "garlic", "amount": "2", "unit": "cloves"}),
            ("3 eggs", {"name": "eggs", "amount": "3", "unit": ""}),
            ("salt", {"name": "salt", "amount": "", "unit": ""}),
        ],
    )
    def test_parse_ingredient(self, text, expected):
        assert parse_ingredient(text) == expected

    def test_mixed_shapes(self):
        """Test objects, JSON strings and plain strings in one list."""
        normalized = normalize_ingredients(
            [
                {"name": "rice", "quantity": 150, "unit": "g"},
                '{"name": "milk", "amount": "200", "unit": "ml"}',
                {"name": "100g butter"},
                "pepper",
            ]
        )

        assert normalized == [
            {"name": "rice", "amount": "150", "unit": "g"},
            {"name": "milk", "amount": "200", "unit": "ml"},
            {"name": "butter", "amount": "100", "unit": "g"},
            {"name": "pepper", "amount": "", "unit": ""},
        ]


class TestGenerate:
    """Test quota-guarded generation."""

    @pytest.mark.asyncio
    async def test_generate_spends_one_generation(self, db_session, test_profile, generator):
        service = RecipeService(db_session, generator)

        recipe = await service.generate(test_profile.id, ["chicken", "rice"], servings=2)

        assert recipe.title == "chicken and rice Recipe"
        assert await monthly_usage(db_session, test_profile.id) == 1

    @pytest.mark.asyncio
    async def test_provider_failure_releases_generation(self, db_session, make_profile, generator):
        """Test that a failed AI call does not cost the user a generation."""
        profile = await make_profile(monthly_usage=2)
        generator.error = AIProviderUnavailableError("out of credits")
        service = RecipeService(db_session, generator)

        with pytest.raises(AIProviderUnavailableError):
            await service.generate(profile.id, ["tofu"], servings=1)

        assert await monthly_usage(db_session, profile.id) == 2

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, db_session, make_profile, generator):
        profile = await make_profile(monthly_usage=3)

        with pytest.raises(QuotaExceededError) as exc_info:
            await RecipeService(db_session, generator).generate(profile.id, ["tofu"], servings=1)

        assert exc_info.value.error_code == "QUOTA_EXCEEDED"
        assert generator.calls == 0

    @pytest.mark.asyncio
    async def test_ingredients_required(self, db_session, test_profile, generator):
        with pytest.raises(ValueError):
            await RecipeService(db_session, generator).generate(test_profile.id, [], servings=2)

        assert await monthly_usage(db_session, test_profile.id) == 0


class TestSavedRecipes:
    """Test save, list and delete."""

    @pytest.mark.asyncio
    async def test_save_normalizes_ingredients(self, db_session, test_profile):
        recipe = await RecipeService(db_session).save(test_profile.id, sample_recipe())

        assert recipe.user_id == test_profile.id
        assert recipe.ingredients[0] == {"name": "pasta", "amount": "200", "unit": "g"}
        assert recipe.cooking_time == "25 minutes"
        profile = await profile_crud.get_profile(db_session, test_profile.id, refresh=True)
        assert profile.saved_recipes_count == 1

    @pytest.mark.asyncio
    async def test_save_limit(self, db_session, make_profile):
        profile = await make_profile(saved_recipes_count=5)

        with pytest.raises(QuotaExceededError):
            await RecipeService(db_session).save(profile.id, sample_recipe())

        assert await RecipeService(db_session).list_recipes(profile.id) == []

    @pytest.mark.asyncio
    async def test_failed_insert_releases_slot(self, db_session, test_profile, monkeypatch):
        """Test that a recipe that could not be stored gives its slot back."""

        async def failing_create(*args, **kwargs):
            raise OperationalError("INSERT INTO recipes", {}, Exception("disk full"))

        monkeypatch.setattr(recipe_service_module.recipe_crud, "create_recipe", failing_create)

        with pytest.raises(OperationalError):
            await RecipeService(db_session).save(test_profile.id, sample_recipe())

        profile = await profile_crud.get_profile(db_session, test_profile.id, refresh=True)
        assert profile.saved_recipes_count == 0

    @pytest.mark.asyncio
    async def test_delete_frees_slot(self, db_session, test_profile):
        service = RecipeService(db_session)
        recipe = await service.save(test_profile.id, sample_recipe())

        await service.delete(test_profile.id, recipe.id)

        assert await service.list_recipes(test_profile.id) == []
        profile = await profile_crud.get_profile(db_session, test_profile.id, refresh=True)
        assert profile.saved_recipes_count == 0

    @pytest.mark.asyncio
    async def test_cannot_delete_other_users_recipe(self, db_session, test_profile, make_profile):
        service = RecipeService(db_session)
        recipe = await service.save(test_profile.id, sample_recipe())
        intruder = await make_profile()

        with pytest.raises(RecipeNotFoundError):
            await service.delete(intruder.id, recipe.id)

        assert len(await service.list_recipes(test_profile.id)) == 1
