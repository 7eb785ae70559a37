[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "optilab"
version = "0.1.0"
description = "Numerical optimisation toolkit: dense linear solvers, PGM image utilities, nonlinear conjugate gradient image smoothing and Gauss-Newton / Levenberg-Marquardt phase unwrapping."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "optimization",
    "conjugate gradient",
    "gauss-newton",
    "levenberg-marquardt",
    "phase unwrapping",
    "image smoothing",
    "pgm",
    "linear algebra",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Mathematics",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
optilab-hqr = "optilab.hqr:main"
optilab-unwrap = "optilab.unwrap:main"

[tool.hatch.build.targets.wheel]
packages = ["optilab"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
