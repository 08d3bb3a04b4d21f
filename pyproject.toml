[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mdnskit"
version = "0.1.0"
description = "Multicast DNS service advertisement and discovery"
requires-python = ">=3.10"
dependencies = [
    "dnspython",
]
keywords = ["mdns", "dns-sd", "zeroconf", "service discovery", "multicast"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mdnskit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
