from setuptools import setup, find_packages

setup(
    name="chefrunner",
    version="0.1.0",
    description="Run chef-client (or any command) on a remote host over SSH, optionally via a bastion",
    author="",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.8",
    install_requires=[
        "paramiko>=3.4.0",
        "pyyaml>=6.0.1",
        "click>=8.1.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "chefrunner=chefrunner.cli:main",
        ],
    },
    include_package_data=True,
)
