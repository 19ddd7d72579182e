[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "edgeproxy"
version = "0.1.0"
description = "Building blocks for an HTTP and TCP edge proxy: forwarding headers, SNI peeking, PROXY protocol and threaded TCP servers"
requires-python = ">=3.10"
dependencies = []
keywords = ["proxy", "reverse-proxy", "tcp", "sni", "proxy-protocol", "forwarded", "tls"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["edgeproxy"]

[tool.hatch.build.targets.sdist]
include = ["edgeproxy", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
