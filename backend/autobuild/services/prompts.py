"""Prompt composition for each agent run of the pipeline."""

from __future__ import annotations

from autobuild.models.build import ProjectType
from autobuild.services.agent_invoker import INPUT_MARKER

AGENT_SYSTEM_PROMPT = (
    "You are a software engineer building projects autonomously. "
    "Work only inside the current working directory, which is the project root. "
    "Do not wait for confirmation between steps."
)

INPUT_PROTOCOL = (
    "## Asking the user\n"
    "If you cannot continue without a decision from the user, print exactly one line\n"
    f'{INPUT_MARKER} {{"question": "<your question>", "options": ["<choice>", "<choice>"]}}\n'
    "and stop. You will be resumed with the answer."
)

TYPE_GUIDELINES: dict[ProjectType, str] = {
    ProjectType.WEB_APP: (
        "Create a modern web application with a clean UI. Use React/Next.js or Vue unless "
        "specified otherwise. Include proper styling and responsive design."
    ),
    ProjectType.API: (
        "Create a RESTful or GraphQL API. Use Node.js/Express, Python/FastAPI, or similar. "
        "Include error handling, validation, and documentation."
    ),
    ProjectType.CLI: (
        "Create a command-line tool. Use Node.js, Python, or Go. Include help text, "
        "argument parsing, and useful output formatting."
    ),
    ProjectType.LIBRARY: (
        "Create a reusable library/package. Include types, documentation, and example "
        "usage. Structure it for npm/PyPI publishing."
    ),
    ProjectType.FULL_STACK: (
        "Create a full-stack application with both frontend and backend. Use Next.js with "
        "API routes, or a separate frontend and backend. Include database setup if needed."
    ),
}

RETRY_MODIFICATIONS_HEADER = "IMPORTANT MODIFICATIONS FOR RETRY:"


def compose_build_prompt(
    description: str,
    project_type: ProjectType,
    preferred_stack: str | None = None,
    *,
    previous_error: str | None = None,
) -> str:
    sections = [
        "You are building a software project autonomously.",
        f"## Project Description\n{description.strip()}",
        f"## Project Type\n{TYPE_GUIDELINES[project_type]}",
    ]
    if preferred_stack:
        sections.append(
            f"## Preferred Stack\nThe user prefers: {preferred_stack}. "
            "Use these technologies if appropriate."
        )
    if previous_error:
        sections.append(
            "## Previous Attempt\n"
            f"A previous build of this project failed with:\n{previous_error.strip()}\n"
            "Avoid repeating that failure."
        )
    sections.append(
        "## File Location\n"
        "Create ALL project files directly in the current working directory. Do not create "
        "a subdirectory for the project; the current directory IS the project root."
    )
    sections.append(
        "## Guidelines\n"
        "1. Create a complete, working project, not just scaffolding\n"
        "2. Include a README.md with setup and run instructions\n"
        "3. Add proper error handling\n"
        "4. Include a package.json or equivalent with all dependencies\n"
        "5. Create a .gitignore file\n"
        "6. Install dependencies and check that the project runs"
    )
    sections.append(INPUT_PROTOCOL)
    sections.append("Begin building the project now.")
    return "\n\n".join(sections)


def compose_modification_prompt(change_description: str) -> str:
    return "\n\n".join(
        [
            "You are modifying an existing project. "
            "The project is already set up in the current working directory.",
            f"## Requested Changes\n{change_description.strip()}",
            "## Guidelines\n"
            "1. First, understand the existing project structure\n"
            "2. Make the requested changes carefully\n"
            "3. Keep changes consistent with the existing code style\n"
            "4. Check that the project still works after the changes",
            INPUT_PROTOCOL,
            "Begin making the changes now.",
        ]
    )


def compose_test_prompt() -> str:
    return "\n\n".join(
        [
            "You are testing an existing project to ensure it works correctly. "
            "The project is in the current working directory; do not look elsewhere.",
            "## Tasks\n"
            "1. List the files to see the project structure\n"
            "2. Check the manifest (package.json or equivalent) for dependencies and scripts\n"
            "3. Run the build or equivalent to verify it compiles\n"
            "4. Run the tests if the project has any\n"
            "5. Fix what is broken; report anything you could not fix",
            INPUT_PROTOCOL,
        ]
    )


def compose_retry_description(description: str, modifications: str | None) -> str:
    notes = (modifications or "").strip()
    if not notes:
        return description
    return f"{description}\n\n{RETRY_MODIFICATIONS_HEADER} {notes}"
