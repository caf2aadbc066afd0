[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "detpost"
version = "0.1.0"
description = "Pre- and post-processing for common detection, recognition and segmentation networks"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "object-detection",
    "non-maximum-suppression",
    "face-detection",
    "face-recognition",
    "text-detection",
    "crowd-counting",
    "anchors",
    "postprocessing",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["detpost"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
