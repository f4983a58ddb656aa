"""
Prompt templates and preset catalogues for portrait, meme and video generation.
"""
from typing import Optional

SCENARIO_COUNT = 5

# Returned without a network call when the user supplied nothing at all
FALLBACK_SCENARIOS = [
    "A mysterious figure in a neon-lit alley at midnight.",
    "A surreal portrait of an artist lost in their creative process.",
    "A whimsical character discovering a hidden, enchanted forest.",
    "A vintage-style photograph of a lone traveler at a forgotten train station.",
    "A high-fashion concept shot with dramatic, colorful lighting and abstract shapes.",
]

# Instructions for the three content-analysis calls, keyed by source slot
ANALYSIS_INSTRUCTIONS = {
    'subject': "Describe the person in this portrait, including their key features, clothing, and expression.",
    'object': "Describe the primary object in this image, including its color, shape, and type.",
    'style': "Describe the artistic style of this image, including its mood, lighting, color palette, and composition.",
}

VIDEO_MOTION_PRESETS = [
    "a subtle, confident smirk turning into a mysterious smile.",
    "a slow dramatic turn towards camera with intense eye contact.",
    "a thoughtful gaze breaking into genuine laughter.",
    "eyes slowly closing and opening with renewed focus.",
    "a slight head tilt with playful eyebrow raise.",
    "a dramatic hair flip with cinematic slow motion.",
    "a pensive look turning into determined expression.",
    "a soft smile gradually building into full laughter.",
    "a mysterious glance over the shoulder.",
    "a cinematic slow-motion walk towards camera.",
]

MEME_CAPTION_PRESETS = [
    "Mogambo khush hua!",
    "Kitne aadmi the?",
    "Rishte mein to hum tumhare baap lagte hain... Naam hai Shahenshah!",
    "Pushpa, I hate tears...",
    "Don ko pakadna mushkil hi nahi... namumkin hai!",
    "Aata majhi satakli!",
    "Bade bade deshon mein aisi choti choti baatein hoti rehti hai...",
    "Mere paas maa hai!",
    "Palat... Palat... Palat!",
    "Thappad se darr nahi lagta sahab... pyaar se lagta hai!",
    "Apun ka naam Hera Pheri!",
    "Kya aapke toothpaste mein namak hai?",
    "All izz well!",
    "Zindagi badi honi chahiye... lambi nahi!",
    "Picture abhi baaki hai mere dost!",
    "Bhaiyya... main aapka fan hoon!",
    "Itna sannata kyun hai bhai?",
    "Yeh dosti hum nahi todenge!",
    "Khamosh!",
    "Jaa Simran jaa... jee le apni zindagi!",
    "Tension lene ka nahi... dene ka!",
]


def _scenario_inputs(subject_desc: str, object_desc: str, style_desc: str) -> list[str]:
    inputs = []
    if subject_desc and subject_desc.strip():
        inputs.append(f'- Person Description: "{subject_desc}"')
    if object_desc and object_desc.strip():
        inputs.append(f'- Object Description: "{object_desc}"')
    if style_desc and style_desc.strip():
        inputs.append(f'- Style Description: "{style_desc}"')
    return inputs


def has_scenario_inputs(subject_desc: str, object_desc: str, style_desc: str,
                        user_intent: Optional[str] = None) -> bool:
    """True when at least one description or the user's idea is non-blank."""
    return any(value and value.strip() for value in (subject_desc, object_desc, style_desc, user_intent))


def build_scenario_prompt(subject_desc: str, object_desc: str, style_desc: str,
                          user_intent: Optional[str] = None) -> str:
    """
    Build the creative-director instruction asking for SCENARIO_COUNT scene
    descriptions as a bare JSON array of strings.

    Two templates: one expands the user's core idea, the other derives scenes
    purely from the image descriptions.
    """
    inputs = _scenario_inputs(subject_desc, object_desc, style_desc)

    if user_intent and user_intent.strip():
        inputs.append(f'- User\'s Core Idea: "{user_intent.strip()}"')
        input_block = '\n'.join(inputs)
        return f"""You are a creative director for a photoshoot. You will be given descriptions for a photoshoot. Your task is to expand on the user's idea and generate {SCENARIO_COUNT} distinct, creative, and cinematic scene descriptions for a portrait.

**Inputs:**
{input_block}

**Instructions:**
1. Use the "User's Core Idea" as the primary theme for all scenes.
2. Weave in the other provided descriptions to create {SCENARIO_COUNT} cohesive variations of the user's idea.
3. If a person description is provided, their identity and core features should be the main focus.
4. If an object is described, it should be integrated naturally into each scene.
5. If a style is described, the overall style, lighting, and mood should be consistent with it.
6. Generate exactly {SCENARIO_COUNT} variations. Each variation should describe a slightly different composition, angle, or interaction related to the user's core idea.
7. Output the {SCENARIO_COUNT} scene descriptions as a JSON array of strings. Do not include any other text, explanation, or markdown formatting.

**Example Output Format:**
["Variation 1 based on user idea...","Variation 2 based on user idea...","Variation 3 based on user idea...","Variation 4 based on user idea...","Variation 5 based on user idea..."]"""

    input_block = '\n'.join(inputs)
    return f"""You are a creative director for a photoshoot. You will be given descriptions for a photoshoot. Your task is to generate {SCENARIO_COUNT} distinct, creative, and cinematic scene descriptions for a portrait.

**Inputs:**
{input_block}

**Instructions:**
1. Combine all provided inputs logically to create a cohesive scene.
2. If a person description is provided, their identity and core features should be the main focus.
3. If an object is described, it should be integrated naturally into the scene.
4. If a style is described, the overall style, lighting, and mood should be consistent with it.
5. Generate exactly {SCENARIO_COUNT} variations. Each variation should describe a slightly different composition, angle, or interaction.
6. Output the {SCENARIO_COUNT} scene descriptions as a JSON array of strings. Do not include any other text, explanation, or markdown formatting.

**Example Output Format:**
["A scene of the person leaning on the object, with a city background at dusk, reflecting the moody lighting.","A close-up of the person interacting with the object, with dramatic side-lighting.","A full-body shot of the person standing near the object in a grand, opulent room.","An action shot of the person using the object, with motion blur and dynamic angles.","A candid moment of the person looking away from the camera, with the object subtly in the background."]"""


def build_portrait_prompt(scenario: str, has_subject: bool, has_object: bool, has_style: bool) -> str:
    """Composition instruction sent alongside the source images for one scenario."""
    inputs = []
    if has_subject:
        inputs.append("- The primary subject is based on the person in the first set of images.")
    if has_object:
        inputs.append("- The key element to include is the object from the second set of images.")
    if has_style:
        inputs.append("- The overall mood, color palette, and lighting style should be derived from the third set of images.")

    requirements = [
        "- Adhere strictly to the 9:16 vertical aspect ratio.",
        "- Ultra-high definition 4K quality with photorealistic details.",
        "- Professional, cinematic lighting and color grading.",
    ]
    if has_subject:
        requirements.append("- Maintain the person's identity and key features from the source images.")
    if has_object:
        requirements.append("- Blend the object seamlessly and naturally into the composition.")
    requirements.append("- Ensure the final image is a single, cohesive scene. Do not create a collage.")

    input_block = '\n'.join(inputs) if inputs else "- No specific images provided for reference. Use your creativity."
    requirement_block = '\n'.join(requirements)

    return f"""Generate a cinematic, photorealistic vertical portrait (9:16 aspect ratio) based on the following inputs and scene description. If no inputs are provided, be creative based on the scene description.

**Inputs:**
{input_block}

**Scene Description:**
"{scenario}"

**Technical Requirements:**
{requirement_block}"""


def build_meme_prompt(caption: str) -> str:
    return (
        f'A meme of the person in the image. Add the text "{caption}" to the bottom of the image '
        'in a bold, white font with a black outline, similar to the Impact font used in classic memes. '
        'Do not alter the original image in any other way. Output the final image.'
    )


def build_video_prompt(motion: str) -> str:
    return f"A cinematic 4-second video portrait with {motion}"
