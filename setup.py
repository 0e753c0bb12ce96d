#!/usr/bin/env python
"""Setup script for the closure-graph library."""
from pathlib import Path
from setuptools import setup, find_packages

# 프로젝트 루트 디렉토리
here = Path(__file__).parent.resolve()

# README 읽기
long_description = (here / "README.md").read_text(encoding="utf-8")

version = "0.1.0"

setup(
    name="closure-graph",
    version=version,
    author="YC Math",
    description="Serialize closures and cyclic object graphs to flat JSON and back",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="serialization closures json object-graph",
    packages=find_packages(exclude=["tests", "tests.*", "docs", "examples"]),
    python_requires=">=3.10",

    # 기본 의존성
    install_requires=[
        "orjson>=3.8.0",
        "xxhash>=3.0.0",
    ],

    # 선택적 의존성
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
            "black>=22.0.0",
            "isort>=5.10.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
        ],
    },

    # 패키지 데이터 포함
    package_data={
        "closure_graph": ["py.typed"],  # 타입 힌트 지원
    },
    include_package_data=True,
    zip_safe=False,
)

# 설치 도움말
if __name__ == "__main__":
    print("\n" + "=" * 60)
    print("closure-graph 설치 옵션:")
    print("=" * 60)
    print("기본 설치:           pip install .")
    print("테스트 도구:         pip install .[test]")
    print("개발 도구:           pip install .[dev]")
    print("=" * 60 + "\n")
