[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "videomanger"
version = "0.1.0"
description = "A small self-hosted web app for browsing, tagging, rating and playing a local video library"
requires-python = ">=3.10"
dependencies = [
    "flask",
]
keywords = ["video", "library", "media", "ffmpeg", "sqlite", "flask"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
videomanger = "videomanger.web:main"
videomanger-populate = "videomanger.populate:main"

[tool.hatch.build.targets.wheel]
packages = ["videomanger"]

[tool.pytest.ini_options]
addopts = "-ra"
