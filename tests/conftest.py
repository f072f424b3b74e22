import jax

# Gradient and Riccati comparisons below are made at double precision.
jax.config.update("jax_enable_x64", True)
