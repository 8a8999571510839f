"""Install the database-side balance adjustment functions on PostgreSQL."""
from django.db import migrations

ADJUST_BALANCE_V2 = """
CREATE OR REPLACE FUNCTION bidcoin_adjust_balance_v2(
    p_user_id bigint,
    p_change integer,
    p_type varchar,
    p_reference_id varchar,
    p_reference_table varchar,
    p_metadata jsonb,
    p_allow_negative boolean DEFAULT true
) RETURNS TABLE(new_balance integer) AS $$
DECLARE
    v_balance integer;
BEGIN
    INSERT INTO bidcoins_user_balance (user_id, balance, updated_at)
    VALUES (p_user_id, 0, now())
    ON CONFLICT (user_id) DO NOTHING;

    SELECT balance INTO v_balance
    FROM bidcoins_user_balance
    WHERE user_id = p_user_id
    FOR UPDATE;

    v_balance := v_balance + p_change;
    IF NOT p_allow_negative AND v_balance < 0 THEN
        RAISE EXCEPTION 'Insufficient BidCoins' USING ERRCODE = 'P0001';
    END IF;

    UPDATE bidcoins_user_balance
    SET balance = v_balance, updated_at = now()
    WHERE user_id = p_user_id;

    INSERT INTO bidcoins_transaction (
        id, user_id, change, balance_after, type,
        reference_id, reference_table, metadata, created_at
    ) VALUES (
        gen_random_uuid(), p_user_id, p_change, v_balance, p_type,
        p_reference_id, p_reference_table, COALESCE(p_metadata, '{}'::jsonb), now()
    );

    RETURN QUERY SELECT v_balance;
END;
$$ LANGUAGE plpgsql;
"""

ADJUST_BALANCE_LEGACY = """
CREATE OR REPLACE FUNCTION bidcoin_adjust_balance(
    p_user_id bigint,
    p_change integer,
    p_type varchar,
    p_reference_id varchar,
    p_reference_table varchar,
    p_metadata jsonb
) RETURNS TABLE(new_balance integer) AS $$
BEGIN
    RETURN QUERY SELECT * FROM bidcoin_adjust_balance_v2(
        p_user_id, p_change, p_type, p_reference_id, p_reference_table, p_metadata, true
    );
END;
$$ LANGUAGE plpgsql;
"""

DROP_FUNCTIONS = """
DROP FUNCTION IF EXISTS bidcoin_adjust_balance(bigint, integer, varchar, varchar, varchar, jsonb);
DROP FUNCTION IF EXISTS bidcoin_adjust_balance_v2(bigint, integer, varchar, varchar, varchar, jsonb, boolean);
"""


def install_functions(apps, schema_editor):
    if schema_editor.connection.vendor != "postgresql":
        return
    schema_editor.execute(ADJUST_BALANCE_V2)
    schema_editor.execute(ADJUST_BALANCE_LEGACY)


def drop_functions(apps, schema_editor):
    if schema_editor.connection.vendor != "postgresql":
        return
    schema_editor.execute(DROP_FUNCTIONS)


class Migration(migrations.Migration):

    dependencies = [
        ("bidcoins", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(install_functions, drop_functions),
    ]
