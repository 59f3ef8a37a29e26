[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dubmatch"
version = "1.0.0"
description = "Match the frames of two cuts of a video with perceptual hashes and plan how to dub one with the other's audio."
requires-python = ">=3.10"
keywords = ["dubbing", "video", "audio", "phash", "perceptual-hash", "scene-detection"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
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
dependencies = [
    "numpy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
dubmatch = "dubmatch.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["dubmatch"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
