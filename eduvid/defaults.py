"""Built-in pipeline definition and presets.

The default document is the base layer of the configuration merge; user
documents, presets and overrides are deep-merged on top of it.
"""

DEFAULT_PIPELINE: dict = {
    "id": "educational-video-pipeline",
    "name": "Educational Video Generation Pipeline",
    "description": "Multi-agent pipeline for creating educational videos with animations and narration",
    "capabilities": [
        {
            "id": "ideation-agent",
            "name": "Topic Ideation Agent",
            "description": "Generates novel and interesting educational topics",
            "kind": "ideation",
            "model": {
                "provider": "openai",
                "model": "gpt-4-turbo-preview",
                "temperature": 0.8,
                "max_tokens": 2000,
            },
            "system_prompt": (
                "You are an educational content expert specializing in creating engaging topics "
                "for visual learning.\n"
                "Your goal is to identify topics that:\n"
                "1. Are intellectually stimulating and novel\n"
                "2. Benefit greatly from visual animation\n"
                "3. Can be explained clearly in the given time constraint\n"
                "4. Appeal to curious learners\n\n"
                "Focus on physics, mathematics, computer science, and natural phenomena."
            ),
            "params": {"number_of_ideas": 5},
        },
        {
            "id": "director-agent",
            "name": "Creative Director Agent",
            "description": "Plans creative visualizations for educational concepts",
            "kind": "direction",
            "model": {
                "provider": "anthropic",
                "model": "claude-3-opus-20240229",
                "temperature": 0.7,
                "max_tokens": 4000,
            },
            "system_prompt": (
                "You are a creative director for educational animations, inspired by "
                "3Blue1Brown's visual style.\n"
                "Your role is to:\n"
                "1. Break down complex concepts into visual scenes\n"
                "2. Design smooth transitions between ideas\n"
                "3. Use visual metaphors and analogies effectively\n"
                "4. Plan camera movements and object animations\n"
                "5. Ensure visual clarity and pedagogical effectiveness\n\n"
                "Provide detailed scene-by-scene breakdowns with timing."
            ),
            "params": {"style": "3blue1brown"},
        },
        {
            "id": "coding-agent",
            "name": "Animation Coding Agent",
            "description": "Implements animations using Manim",
            "kind": "animation",
            "model": {
                "provider": "openai",
                "model": "gpt-4-turbo-preview",
                "temperature": 0.3,
                "max_tokens": 8000,
            },
            "system_prompt": (
                "You are an expert programmer specializing in mathematical animations using Manim.\n"
                "Your responsibilities:\n"
                "1. Translate creative direction into working Manim code\n"
                "2. Ensure smooth animations and proper timing\n"
                "3. Debug and fix any rendering issues\n"
                "4. Optimize for visual quality and performance\n"
                "5. Follow Manim best practices and conventions"
            ),
            "params": {"max_iterations": 5},
        },
        {
            "id": "voice-agent",
            "name": "Voice Script Agent",
            "description": "Creates narration scripts synchronized with animations",
            "kind": "narration-script",
            "model": {
                "provider": "openai",
                "model": "gpt-4-turbo-preview",
                "temperature": 0.6,
                "max_tokens": 3000,
            },
            "system_prompt": (
                "You are a science communicator writing narration for educational animations.\n"
                "Your script should:\n"
                "1. Synchronize perfectly with the visual elements\n"
                "2. Use clear, engaging language appropriate for the audience\n"
                "3. Build understanding progressively\n"
                "4. Include natural pauses for visual emphasis\n"
                "5. Balance information density with comprehension\n\n"
                "Provide timestamps for each narration segment."
            ),
            "params": {"tone": "educational", "target_audience": "general", "pacing": "moderate"},
        },
        {
            "id": "critique-agent",
            "name": "Quality Critique Agent",
            "description": "Reviews and provides feedback on generated videos",
            "kind": "critique",
            "model": {
                "provider": "anthropic",
                "model": "claude-3-sonnet-20240229",
                "temperature": 0.4,
                "max_tokens": 2000,
            },
            "system_prompt": (
                "You are an educational content reviewer providing constructive feedback.\n"
                "Evaluate:\n"
                "1. Visual clarity and effectiveness\n"
                "2. Pedagogical value and accuracy\n"
                "3. Pacing and information flow\n"
                "4. Audio-visual synchronization\n"
                "5. Overall engagement and quality\n\n"
                "Provide specific, actionable feedback for improvement."
            ),
        },
    ],
    "stages": [
        {
            "id": "ideation",
            "name": "Topic Ideation",
            "capability": "ideation-agent",
            "inputs": ["topic"],
            "outputs": ["ideas"],
            "timeout": 60,
        },
        {
            "id": "direction",
            "name": "Creative Direction",
            "capability": "director-agent",
            "inputs": ["selected_idea", "video_duration"],
            "outputs": ["scene_plan"],
            "timeout": 120,
        },
        {
            "id": "animation",
            "name": "Animation Coding",
            "capability": "coding-agent",
            "inputs": ["scene_plan", "framework", "output_format", "fps", "resolution"],
            "outputs": ["animation_code", "video_file"],
            "timeout": 600,
            "retry_on_failure": True,
        },
        {
            "id": "voice-script",
            "name": "Voice Script Writing",
            "capability": "voice-agent",
            "inputs": ["scene_plan", "animation_code"],
            "outputs": ["voice_script"],
            "timeout": 120,
        },
        {
            "id": "voice-synthesis",
            "name": "Voice Synthesis",
            "capability": "none",
            "inputs": ["voice_script"],
            "outputs": ["audio_file"],
            "timeout": 60,
        },
        {
            "id": "final-assembly",
            "name": "Video Assembly",
            "capability": "none",
            "inputs": ["video_file", "audio_file", "branch_index"],
            "outputs": ["final_video"],
            "timeout": 120,
        },
        {
            "id": "critique",
            "name": "Quality Critique",
            "capability": "critique-agent",
            "inputs": ["final_video", "scene_plan", "voice_script"],
            "outputs": ["critique"],
            "timeout": 120,
        },
    ],
    "video": {
        "duration": 30,
        "fps": 60,
        "resolution": {"width": 1920, "height": 1080},
        "quality": "high",
    },
    "animation_framework": {
        "name": "manim",
        "version": "latest",
        "setup_command": "pip install manim",
        "run_command": "manim render -qh --fps {fps} {input_file} {scene_name}",
        "output_format": "mp4",
    },
    "output_dir": "./video-output",
    "enable_critique": True,
    "critique_stage": "critique",
    "max_stage_retries": 1,
    "branch_limit": 3,
}

PRESETS: dict[str, dict] = {
    "quick-demo": {
        "video": {
            "duration": 15,
            "fps": 30,
            "resolution": {"width": 1280, "height": 720},
            "quality": "medium",
        }
    },
    "full-lecture": {
        "video": {
            "duration": 600,
            "fps": 60,
            "resolution": {"width": 1920, "height": 1080},
            "quality": "ultra",
        }
    },
    "social-media": {
        "video": {
            "duration": 60,
            "fps": 30,
            "resolution": {"width": 1080, "height": 1920},
            "quality": "high",
        }
    },
}

PRESET_DESCRIPTIONS = {
    "quick-demo": "15s, 720p, medium quality",
    "full-lecture": "10min, 1080p, ultra quality",
    "social-media": "60s, vertical 1080x1920",
}
