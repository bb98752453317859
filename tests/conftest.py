import pytest


def _random_mutation(rng, c):
    size = len(c)
    choice = rng.randrange(8)
    if choice == 0 or size == 0:
        c.append(rng.randrange(100))
    elif choice == 1:
        c.insert(rng.randrange(size + 1), rng.randrange(100))
    elif choice == 2:
        c[rng.randrange(size)] = rng.randrange(100)
    elif choice == 3:
        c.pop(rng.randrange(size))
    elif choice == 4:
        c.extend(rng.randrange(100) for _ in range(rng.randrange(3)))
    elif choice == 5:
        items = list(c.collection)
        rng.shuffle(items)
        c.replace(items[: rng.randrange(size + 1)] + [rng.randrange(100)], diff=True)
    elif choice == 6:
        with c.batch():
            for _ in range(rng.randrange(1, 4)):
                _random_mutation(rng, c)
    else:
        c.replace([rng.randrange(100) for _ in range(rng.randrange(4))])


@pytest.fixture
def random_mutation():
    """Apply one random mutation (possibly a nested batch) to a collection."""
    return _random_mutation
