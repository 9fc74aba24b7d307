"""Recipe media prompt templates — short video, step clips, step photos.

All builders are pure and deterministic: the same recipe always yields the
same prompt, and every prompt fits the provider's 500-character budget.

1. build_prompt — close-up short video prompt from techniques, ingredient
   colors, cuisine style and an optional hero moment.
2. build_alternate_prompt — overhead variant used for the single
   quality-gate regeneration.
3. build_step_video_prompt / build_step_image_prompt — one prompt per step.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from ..models.recipe import Ingredient, Step

PROMPT_BUDGET = 500

# Insertion order is the match order within a single instruction.
TECHNIQUE_VISUALS: dict[str, str] = {
    "sear": "sizzling, golden crust forming, foaming butter, wisps of smoke",
    "fry": "golden bubbles, crispy edges forming, oil shimmering",
    "sauté": "ingredients dancing in the pan, butter foaming, gentle sizzle",
    "simmer": "gentle bubbles rising, steam swirling, rich sauce thickening",
    "boil": "rolling boil, steam billowing, vigorous bubbles",
    "bake": "golden-brown surface, oven warmth, rising dough",
    "roast": "caramelized edges, rendered fat glistening, deep golden color",
    "grill": "char marks forming, flames licking, smoke rising",
    "braise": "tender meat falling apart, rich braising liquid, aromatic steam",
    "chop": "precise knife cuts, ingredients tumbling, fresh colors",
    "whisk": "smooth emulsion forming, ingredients blending, creamy texture",
    "fold": "gentle incorporation, airy mixture, delicate movement",
    "knead": "elastic dough stretching, flour dusting, rhythmic motion",
    "plate": "elegant drizzle of sauce, precise garnish placement, final steam",
    "garnish": "fresh herbs placed delicately, finishing drizzle, perfect presentation",
    "pour": "liquid cascading smoothly, creating ripples, glossy finish",
    "stir": "circular motion, ingredients melding, colors blending",
    "blend": "smooth transformation, vibrant colors swirling, creamy result",
    "caramelize": "sugar melting to amber, glossy surface, sweet aroma visible in steam",
    "flambe": "dramatic flames, alcohol burning off, golden glow",
    "reduce": "sauce concentrating, glossy sheen, steam rising steadily",
    "marinate": "liquid coating evenly, herbs and spices settling, glistening surface",
    "toast": "golden color developing, nutty aroma visible in warmth, crispy texture",
    "steam": "delicate steam rising, food gently cooking, moisture beading",
    "glaze": "glossy coating applied, shiny surface, dripping edges",
}
GENERIC_TECHNIQUE = "smooth cooking motion, professional kitchen ambiance, appetizing preparation"

INGREDIENT_COLORS: dict[str, str] = {
    "tomato": "rich reds",
    "pepper": "vibrant reds and greens",
    "basil": "fresh greens",
    "lemon": "bright yellows",
    "turmeric": "warm golden",
    "saffron": "deep golden",
    "paprika": "warm orange-red",
    "spinach": "deep greens",
    "carrot": "warm orange",
    "blueberry": "deep purple-blue",
    "avocado": "creamy green",
    "chocolate": "rich dark brown",
    "cream": "ivory white",
    "butter": "warm golden yellow",
    "salmon": "coral pink",
    "shrimp": "coral orange",
    "egg": "golden yolk",
    "mushroom": "earthy brown",
    "garlic": "pale ivory",
    "onion": "translucent amber",
    "honey": "liquid amber gold",
    "mint": "cool green",
    "cilantro": "bright green",
    "parsley": "fresh green",
    "cheese": "golden melted",
}
GENERIC_COLORS = "warm, appetizing earth tones"

CUISINE_STYLES: dict[str, str] = {
    "italian": "rustic Mediterranean warmth, wooden surfaces, olive oil glistening, terracotta tones",
    "japanese": "minimalist zen presentation, clean lines, delicate porcelain, natural wood",
    "french": "elegant fine dining, copper cookware, precise technique, rich sauces",
    "mexican": "vibrant colors, rustic clay, fresh lime, colorful garnishes",
    "indian": "warm spice tones, brass vessels, aromatic steam, rich golden colors",
    "thai": "tropical freshness, wok flames, vibrant herbs, coconut cream",
    "chinese": "wok hei flames, bamboo steamers, glossy sauces, chopstick presentation",
    "korean": "banchan arrangement, sizzling stone bowls, fermented richness, neat presentation",
    "mediterranean": "sun-drenched colors, fresh herbs, olive oil drizzle, rustic charm",
    "american": "hearty comfort, cast iron, melted cheese, generous portions",
    "middle_eastern": "warm spices, flatbread, tahini drizzle, jewel-toned ingredients",
}
GENERIC_CUISINE_STYLE = "warm food photography lighting, professional kitchen setting"

STEP_MOTION_FALLBACK = "smooth cooking motion, professional kitchen ambiance"

STEP_VIDEO_TEMPLATE = (
    "Cinematic cooking video, {motion}. Professional kitchen lighting, shallow depth "
    "of field. Making {dish}, step {step}. Smooth camera movement, appetizing food "
    "photography style. 4K quality, warm color grading."
)

STEP_IMAGE_TEMPLATE = (
    "Professional food photography of {dish} - {phase} (step {step} of {total}): "
    "{instruction}. Style: overhead shot, soft natural window light, marble countertop, "
    "shallow depth of field, no hands visible, warm color temperature, editorial quality."
)


def fit_budget(prompt: str, budget: int = PROMPT_BUDGET) -> str:
    """Truncate *prompt* to ``budget - 3`` chars plus an ellipsis when too long."""
    if len(prompt) > budget:
        return prompt[: budget - 3] + "..."
    return prompt


def _instruction(step: Step | str) -> str:
    return step.instruction if isinstance(step, Step) else str(step)


def _ingredient_name(ingredient: Ingredient | str) -> str:
    return ingredient.name if isinstance(ingredient, Ingredient) else str(ingredient)


def extract_techniques(steps: Iterable[Step | str], limit: int = 3) -> list[str]:
    """Collect distinct technique visuals in encounter order, capped at *limit*."""
    found: list[str] = []
    for step in steps:
        text = _instruction(step).lower()
        for keyword, visual in TECHNIQUE_VISUALS.items():
            if keyword in text and visual not in found:
                found.append(visual)
    if not found:
        found.append(GENERIC_TECHNIQUE)
    return found[:limit]


def extract_color_palette(ingredients: Iterable[Ingredient | str], limit: int = 3) -> str:
    colors: list[str] = []
    for ingredient in ingredients:
        name = _ingredient_name(ingredient).lower()
        for keyword, color in INGREDIENT_COLORS.items():
            if keyword in name and color not in colors:
                colors.append(color)
    if not colors:
        return GENERIC_COLORS
    return ", ".join(colors[:limit])


def cuisine_style(cuisine: str | None) -> str:
    if not cuisine:
        return GENERIC_CUISINE_STYLE
    lowered = cuisine.lower()
    for key, style in CUISINE_STYLES.items():
        if key in lowered:
            return style
    return GENERIC_CUISINE_STYLE


def build_prompt(
    title: str,
    steps: Sequence[Step | str],
    ingredients: Sequence[Ingredient | str],
    cuisine: str | None = None,
    hero_moment: str | None = None,
) -> str:
    """Build the primary close-up short video prompt."""
    techniques = extract_techniques(steps)
    hero = hero_moment or f"The finished {title} presented beautifully"
    prompt = " ".join([
        f"Cinematic close-up food video of {title}.",
        ". ".join(techniques) + ".",
        f"Color palette: {extract_color_palette(ingredients)}.",
        f"{cuisine_style(cuisine)}.",
        f"{hero}.",
        "Warm food photography lighting, shallow depth of field.",
        "No hands visible, no text overlays.",
        "Smooth slow camera movement, professional 4K quality.",
        "9:16 vertical format, TikTok cooking video style.",
    ])
    return fit_budget(prompt)


def build_alternate_prompt(
    title: str,
    steps: Sequence[Step | str],
    ingredients: Sequence[Ingredient | str],
) -> str:
    """Build the overhead variant used when the first video fails the quality gate."""
    techniques = extract_techniques(steps)
    segments = [
        f"Overhead cinematic food video of {title} being prepared.",
        techniques[0] + "." if techniques else "",
        f"Rich {extract_color_palette(ingredients)} tones.",
        "Final plated dish with steam rising, garnish detail.",
        "Dramatic top-down camera slowly pulling back.",
        "Moody warm lighting, bokeh background.",
        "No hands, no text. Professional food cinematography.",
        "9:16 vertical, TikTok style.",
    ]
    return fit_budget(" ".join(s for s in segments if s))


def build_step_video_prompt(dish_name: str, instruction: str, step_number: int) -> str:
    """Motion prompt for one step clip, driven by the first technique it mentions."""
    text = instruction.lower()
    motion = next(
        (visual for keyword, visual in TECHNIQUE_VISUALS.items() if keyword in text),
        STEP_MOTION_FALLBACK,
    )
    return fit_budget(STEP_VIDEO_TEMPLATE.format(motion=motion, dish=dish_name, step=step_number))


def cooking_phase(step_number: int, total_steps: int) -> str:
    if step_number <= math.ceil(total_steps * 0.3):
        return "ingredient preparation"
    if step_number <= math.ceil(total_steps * 0.7):
        return "cooking in progress"
    return "final touches and plating"


def build_step_image_prompt(
    dish_name: str, instruction: str, step_number: int, total_steps: int,
) -> str:
    """Still photo prompt for one step, phrased by its position in the recipe."""
    return fit_budget(STEP_IMAGE_TEMPLATE.format(
        dish=dish_name,
        phase=cooking_phase(step_number, total_steps),
        step=step_number,
        total=total_steps,
        instruction=instruction.strip().rstrip("."),
    ))
