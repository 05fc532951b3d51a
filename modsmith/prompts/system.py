"""System instruction builder."""

from __future__ import annotations

from modsmith.llm.types import CompletionRequest, OutputMode, ProjectInfo


def build_system_instruction(request: CompletionRequest) -> str:
    """
    Build the system instruction for one request.

    Assembles the base role, the caller's own instructions, the project
    description and, in structured mode, the JSON output contract.
    """
    sections: list[str] = [BASE_SECTION]

    if request.instructions:
        sections.append(request.instructions.strip())

    if request.project is not None:
        sections.append(project_section(request.project))

    if request.mode == OutputMode.STRUCTURED_JSON:
        sections.append(STRUCTURED_OUTPUT_SECTION)

    return "\n\n".join(sections)


def project_section(project: ProjectInfo) -> str:
    lines = ["## Project", "", f"- Name: {project.name}"]
    if project.platform:
        lines.append(f"- Platform: {project.platform}")
    if project.minecraft_version:
        lines.append(f"- Minecraft version: {project.minecraft_version}")
    if project.description:
        lines.append(f"- Description: {project.description}")
    return "\n".join(lines)


BASE_SECTION = (
    "You are a coding assistant for Minecraft plugin and mod projects. "
    "You receive the current project files and a change request."
)

STRUCTURED_OUTPUT_SECTION = """## Output Format

Respond with a single JSON object and nothing else:

{"files": [{"path": "<project-relative path>", "content": "<full new file content>"}]}

- Include only files that must be created or changed.
- Always return the complete file content, never a diff.
- If the request cannot be fulfilled safely, respond with {"error": "SAFETY_VIOLATION"}."""
