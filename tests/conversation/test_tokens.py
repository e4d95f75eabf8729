from chatrelay.conversation.tokens import TokenBudget, estimate_tokens


def test_estimate_tokens_rounds_up_per_four_characters():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("x" * 400) == 100


def test_acceptable_is_strictly_below_limit():
    budget = TokenBudget(10)

    assert budget.acceptable("x" * 36)  # 9 tokens
    assert not budget.acceptable("x" * 40)  # 10 tokens
    assert budget.acceptable("x" * 40, max_tokens=11)


def test_custom_counter_is_used():
    budget = TokenBudget(3, counter=lambda text: len(text.split()))

    assert budget.count("one two three") == 3
    assert not budget.acceptable("one two three")
    assert budget.acceptable("one two")
