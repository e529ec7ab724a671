from setuptools import setup, find_packages

setup(
    name="arcane",
    version="1.0.0",
    description="ARCANE — terminal chat and coding agent for Mistral models.",
    long_description="""ARCANE features:
- Chat mode: plain conversation with the model
- Agent mode: the model reads, writes, edits, searches and runs shell commands
  through seven sandboxed tools (ls, read, write, edit, glob, grep, bash)
- Bounded agent loop with a forced final answer after the iteration limit
- Context compaction: old tool results shrink as the conversation grows
- Recognizes tool calls the model writes as plain text (e.g. ls{})
- @file mentions attach files to your message
""",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "mistralai>=1.0.0,<2",
        "rich>=13.7.0",
        "click>=8.1.0",
        "prompt_toolkit>=3.0.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "arcane=arcane.CLI:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
