"""Setup configuration for Arbiter Discord Bot."""

from setuptools import setup, find_packages

setup(
    name="arbiter",
    version="0.1.0",
    description="A Discord bot that flags self-contradiction and misinformation in debates",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord>=2.6",
        "openai>=1.40",
        "httpx>=0.27",
        "aiosqlite>=0.20",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "jsonschema>=4.21",
        "prompt_toolkit>=3.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "arbiter=arbiter.main:main",
        ],
    },
)
