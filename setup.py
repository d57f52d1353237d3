from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="fieldservice-ui-tests",
    version="1.0.0",
    author="volkb79-2",
    description="Dual-mode (isolated / production) test data controller and Playwright suite for the field-service app",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src", "ui_tests": "ui_tests"},
    packages=find_packages(where="src") + ["ui_tests", "ui_tests.pages"],
    package_data={"ui_tests": ["fixtures/isolated/*.sql", "fixtures/isolated/*.json"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Framework :: Pytest",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Testing",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
)
