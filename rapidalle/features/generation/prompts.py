"""Prompt templates for caption and image generation.

The image prompt carries fixed quality constraints; theme and description
are interpolated verbatim.
"""

CAPTION_SYSTEM_PROMPT = (
    "You are a concise creative assistant. Write a short, vivid caption (2-3 sentences)."
)

COMPLETION_SYSTEM_PROMPT = "You are a helpful assistant"

IMAGE_PROMPT_TEMPLATE = """Create a photorealistic, production-quality image based on the theme and description below.

Hard constraints (must follow):
- Never render text, letters, numbers, logos, watermarks, UI, borders, or frames.
- Maintain coherent perspective and scale; no distortions, extra limbs, or artifacts.
- Avoid extreme cropping; keep the main subject fully visible.

Quality & look:
- Physically plausible materials, accurate reflections, and natural shadows (soft global illumination).
- Balanced composition with clear subject, useful negative space, and depth (foreground/midground/background).
- Camera feel: 35-50mm lens, subtle depth of field where appropriate; minimal wide-angle distortion.
- Color: cohesive palette informed by the theme; avoid harsh clipping or oversaturation unless implied.

Room type: {theme}

Style: {description}

Output:
- Size: {size}
- Style: photorealistic, ultra-detailed, high dynamic range"""


def build_caption_prompt(theme: str, description: str, size: str) -> str:
    return f"Theme: {theme}\n\nDescription: {description}\n\nSize: {size}"


def build_image_prompt(theme: str, description: str, size: str) -> str:
    return IMAGE_PROMPT_TEMPLATE.format(theme=theme, description=description, size=size)
