[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gatewayproxy"
version = "0.1.0"
description = "Composable proxy pipeline for API gateways: request cloning, response merging, shadowing, static data and modifier plugins"
requires-python = ">=3.10"
dependencies = []
keywords = ["api-gateway", "proxy", "middleware", "backend", "merging"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["gatewayproxy"]

[tool.pytest.ini_options]
addopts = "-ra"
