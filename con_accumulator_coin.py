"""
ACCUMULATOR COIN LEDGER

Non-fungible coins committed into a single RSA accumulator value:
  A = G^(product of active elements) mod N

Each coin (owner, id) is represented by a prime element derived off-chain.
The ledger stores only the accumulator, the owner and element of every
active coin id, and the delta produced by each finalized batch.

Spends are checked against A when submitted (witness^element == A) and
applied by finalize_batch(): spent elements are removed first (Shamir trick
over the spent witnesses), then new elements are added. Each delta records
the state between the two steps so clients can check both of them.
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

# RSA-2048 challenge modulus (unknown factorisation); mirrors the client
N = 25195908475657893494027183240048398571429282126204032027777137836043662020707595556264018525880784406918290641249515082189298559149176184502808489120072844992687392807287776735971418347270261896375014971824691165077613379859095700097330459748808428401797429100642458691817195118746121515172654632282216869987549182422433637259085141865462043576798423387184774447920739934236584823824281198163815010674810451660377306056201619676256133844143603833904414952634432190114657544454178424020924616515723350778707749817125772467962926386356373289912154831438167899885040445364023527381951378636564391212010397122822120720357
G = 2

def mod_exp(base: int, exponent: int, modulus: int):
    if exponent == 0:
        return 1
    result = 1
    base = base % modulus
    while exponent > 0:
        if exponent % 2 == 1:
            result = (result * base) % modulus
        exponent = exponent >> 1
        base = (base * base) % modulus
    return result

def ext_gcd(a: int, b: int):
    # Returns gcd and Bezout coefficients: x*a + y*b == gcd
    old_r = a
    r = b
    old_x = 1
    x = 0
    old_y = 0
    y = 1
    while r != 0:
        q = old_r // r
        tmp = old_r - q * r
        old_r = r
        r = tmp
        tmp = old_x - q * x
        old_x = x
        x = tmp
        tmp = old_y - q * y
        old_y = y
        y = tmp
    return {'gcd': old_r, 'x': old_x, 'y': old_y}

def mod_inverse(value: int, modulus: int):
    res = ext_gcd(value % modulus, modulus)
    assert res['gcd'] == 1, 'Value is not invertible'
    return res['x'] % modulus

def signed_exp(base: int, exponent: int, modulus: int):
    if exponent < 0:
        return mod_exp(mod_inverse(base, modulus), 0 - exponent, modulus)
    return mod_exp(base, exponent, modulus)

def shamir_trick(xth_root: int, yth_root: int, x: int, y: int):
    # Given r1^x == r2^y == z with gcd(x, y) == 1, returns the xy-th root of z
    assert mod_exp(xth_root, x, N) == mod_exp(yth_root, y, N), 'Roots do not match'
    res = ext_gcd(x, y)
    assert res['gcd'] == 1, 'Exponents are not coprime'
    return (signed_exp(xth_root, res['y'], N) * signed_exp(yth_root, res['x'], N)) % N

def verify_membership(witness: int, element: int, accumulator: int):
    return mod_exp(witness, element, N) == accumulator

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# accumulator value
state = Variable()

# last finalized batch
sequence = Variable()

# str(coin_id) -> {'owner': str, 'element': int}
coins = Hash()

# str(index) -> queued mint/spend awaiting finalize_batch()
pending = Hash()
pending_count = Variable()

# str(coin_id) -> bool
pending_ids = Hash()

# str(sequence) -> delta dict
deltas = Hash()

metadata = Hash()

next_tx_id = Variable()

BatchFinalizedEvent = LogEvent('BatchFinalized', {
    'sequence': {'type': int, 'idx': True},
    'transactions': {'type': int},
    'deletions': {'type': int}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed():
    metadata['name'] = "Accumulator Coin Ledger"
    metadata['operator'] = ctx.caller

    state.set(G)
    sequence.set(0)
    pending_count.set(0)
    next_tx_id.set(1)

# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------

@export
def get_metadata():
    return {
        'name': metadata['name'],
        'operator': metadata['operator'],
        'sequence': sequence.get(),
        'pending': pending_count.get()
    }

@export
def get_state():
    return state.get()

@export
def get_coin(coin_id: int):
    data = coins[str(coin_id)]
    if data is None:
        return {
            'exists': False,
            'owner': '',
            'element': 0
        }
    return {
        'exists': True,
        'owner': data['owner'],
        'element': data['element']
    }

@export
def get_delta(seq: int):
    return deltas[str(seq)]

# -----------------------------------------------------------------------------
# Core: queue mints and spends for the next batch
# -----------------------------------------------------------------------------

def next_tx():
    tid = next_tx_id.get()
    next_tx_id.set(tid + 1)
    return tid

def enqueue(entry: dict):
    tx_id = next_tx()
    entry['tx_id'] = tx_id
    index = pending_count.get()
    pending[str(index)] = entry
    pending_count.set(index + 1)
    pending_ids[entry['coin_key']] = True
    return tx_id

@export
def mint(coin_id: int, owner: str, element: int):
    assert ctx.caller == owner, 'Only the owner can mint'
    assert element > 1, 'Bad element'

    key = str(coin_id)
    assert coins[key] is None, 'Coin id already active'
    assert not pending_ids[key], 'Coin id already pending'

    return enqueue({
        'kind': 'mint',
        'coin_key': key,
        'owner': owner,
        'added_element': element
    })

@export
def spend(coin_id: int,
          input_owner: str,
          output_owner: str,
          input_element: int,
          output_element: int,
          witness: int):
    assert input_owner != output_owner, 'Cannot transfer to self'
    assert ctx.caller == input_owner, 'Only the owner can spend'
    assert output_element > 1, 'Bad element'

    key = str(coin_id)
    coin = coins[key]
    assert coin is not None, 'Unknown coin'
    assert not pending_ids[key], 'Coin already has a pending transaction'
    assert coin['owner'] == input_owner, 'Input owner does not hold this coin'
    assert coin['element'] == input_element, 'Input element mismatch'

    # Membership check against the current accumulator
    assert verify_membership(witness, input_element, state.get()), 'Invalid witness'

    return enqueue({
        'kind': 'spend',
        'coin_key': key,
        'owner': output_owner,
        'added_element': output_element,
        'deleted_element': input_element,
        'witness': witness
    })

# -----------------------------------------------------------------------------
# Batch finalization (operator / block producer)
# -----------------------------------------------------------------------------

@export
def finalize_batch():
    assert ctx.caller == metadata['operator'], 'Only operator can finalize'

    prior = state.get()
    count = pending_count.get()

    reduced = prior
    deleted_product = 1
    added_product = 1
    spent = 0
    included = []

    i = 0
    while i < count:
        entry = pending[str(i)]
        if entry['kind'] == 'spend':
            # Every spent witness is a root of `prior`; fold them together
            if deleted_product == 1:
                reduced = entry['witness']
            else:
                reduced = shamir_trick(reduced, entry['witness'], deleted_product, entry['deleted_element'])
            deleted_product = deleted_product * entry['deleted_element']
            spent = spent + 1

        added_product = added_product * entry['added_element']
        coins[entry['coin_key']] = {
            'owner': entry['owner'],
            'element': entry['added_element']
        }
        pending_ids[entry['coin_key']] = False
        included.append(entry['tx_id'])
        i = i + 1

    new_state = mod_exp(reduced, added_product, N)
    seq = sequence.get() + 1

    delta = {
        'sequence': seq,
        'prior_state': prior,
        'new_state': new_state,
        'reduced_state': reduced,
        'added_product': added_product,
        'deleted_product': deleted_product,
        'included': included
    }
    deltas[str(seq)] = delta

    state.set(new_state)
    sequence.set(seq)
    pending_count.set(0)

    BatchFinalizedEvent({
        'sequence': seq,
        'transactions': count,
        'deletions': spent
    })

    return delta
