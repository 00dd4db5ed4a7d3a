from setuptools import setup, find_packages
from pathlib import Path

readme_path = Path(__file__).parent / "README.md"
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")
else:
    long_description = "Compose LLM applications from typed components: chains, parallels, branches, graphs and a ReAct agent."

setup(
    name="composeflow",
    version="0.1.0",
    description="Compose LLM applications from typed components into invokable and streamable graphs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "networkx>=3.3",
        "pyyaml>=6.0",
        "jinja2>=3.0",
        "jsonschema>=4.20.0",
        "typer>=0.9.0",
    ],
    entry_points={
        "console_scripts": [
            "composeflow=composeflow.cli:main",
        ],
    },
    extras_require={
        "dev": [
            "pytest",
            "coverage",
            "hypothesis",
            "parameterized==0.9.0",
        ],
    },
)
