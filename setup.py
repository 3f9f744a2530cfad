from setuptools import find_packages, setup

package_name = "ndt_reg2d"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_packages(exclude=["test"]),
    data_files=[
        (
            "share/" + package_name + "/config",
            [
                "config/ndt_reg2d.yaml",
            ],
        ),
    ],
    python_requires=">=3.9",
    install_requires=["setuptools", "numpy", "scipy", "pydantic>=2", "pyyaml"],
    extras_require={"test": ["pytest"]},
    zip_safe=True,
    description="Planar D2D-NDT scan registration with a robust correlative fallback",
    license="Apache-2.0",
    tests_require=["pytest"],
)
