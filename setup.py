from setuptools import setup, find_namespace_packages
from os import path

requires = [
    "colorlog~=6.4",
    "jinja2~=3.0",
    # leave upper bound floating for fast-moving and extremely stable packaging
    "packaging>=21.3",
    "pydantic~=2.5",
    "pyyaml~=6.0",
    "tornado~=6.0",
]


# read the contents of your README file
this_directory = path.abspath(path.dirname(__file__))
with open(path.join(this_directory, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

version = "1.0.0"

setup(
    version=version,
    python_requires=">=3.11",  # also update classifiers
    # Meta data
    name="jenkins-conf",
    description="Converge a Jenkins server and its nodes to a declared state",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Inmanta",
    author_email="code@inmanta.com",
    license="Apache Software License 2",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Operating System :: POSIX :: Linux",
        "Topic :: System :: Systems Administration",
        "Topic :: Software Development :: Build Tools",
        "Programming Language :: Python :: 3.11",
    ],
    keywords="jenkins configurationmanagement convergence",
    # Packaging
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src"),
    package_data={"jenkinsconf": ["templates/*.j2"]},
    zip_safe=False,
    include_package_data=True,
    install_requires=requires,
    extras_require={
        "test": ["pytest"],
    },
)
